"""
Critic weight and movie average recalculation.

One run records a single new rating and then makes one pass over critics
and one pass over movies:

1. upsert the (movie, critic) rating
2. re-weight every critic from how far their ratings sit from the movie
   averages as they stood before this run
3. re-average every movie with the freshly computed critic weights
4. commit everything in one transaction and read back the summary

This is a single update step, not an iteration to a fixed point.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .exceptions import ArithmeticIndeterminate, NotFoundError
from .models import Rating
from .repository import UnitOfWork

logger = logging.getLogger(__name__)

HIGH_WEIGHT = 1.0
MEDIUM_WEIGHT = 0.33
LOW_WEIGHT = 0.15

# Lower bounds (exclusive) of each disparity tier, strictest first.
DISPARITY_TIERS = (
    (2.0, LOW_WEIGHT),
    (1.0, MEDIUM_WEIGHT),
)


@dataclass
class UpsertResult:
    rating: Rating
    created: bool
    previous_stars: Optional[int] = None


@dataclass
class Summary:
    critic_rating_weight: float
    movie_rating: float

    def lines(self):
        return [
            f"New critic rating weight: {self.critic_rating_weight:.1f}",
            f"New movie rating: {self.movie_rating:.1f}",
        ]


def weight_for_disparity(disparity: float) -> float:
    """Map a critic's mean disparity to one of the three weight tiers."""
    for lower_bound, weight in DISPARITY_TIERS:
        if disparity > lower_bound:
            return weight
    return HIGH_WEIGHT


def upsert_rating(repository, unit: UnitOfWork, movie_id: int, critic_id: int, stars: int) -> UpsertResult:
    if repository.find_movie(movie_id) is None:
        raise NotFoundError(f"Movie {movie_id} does not exist")
    if repository.find_critic(critic_id) is None:
        raise NotFoundError(f"Critic {critic_id} does not exist")

    rating = repository.find_rating(movie_id, critic_id)
    if rating is None:
        rating = repository.create_rating(movie_id, critic_id, stars)
        result = UpsertResult(rating=rating, created=True)
        logger.info("Created rating movie=%s critic=%s stars=%s", movie_id, critic_id, stars)
    else:
        result = UpsertResult(rating=rating, created=False, previous_stars=rating.stars)
        rating.stars = stars
        logger.info(
            "Updated rating movie=%s critic=%s stars=%s->%s",
            movie_id, critic_id, result.previous_stars, stars,
        )

    unit.register(rating)
    return result


def relative_disparity(ratings, upserted: Optional[UpsertResult] = None) -> Optional[float]:
    """
    Mean absolute gap between a critic's stars and the movies' current averages.

    Only ratings of movies that already have an average count. A rating
    created by this run is left out; an overwritten one counts at its new
    star count.
    Returns None when no rating is comparable.
    """
    stars, averages = [], []
    for rating in ratings:
        if rating.movie.average_rating is None:
            continue
        if upserted is not None and upserted.created and rating is upserted.rating:
            continue
        stars.append(rating.stars)
        averages.append(rating.movie.average_rating)

    if not stars:
        return None
    return float(np.mean(np.abs(np.array(stars, dtype=float) - np.array(averages, dtype=float))))


def update_critic_weights(repository, unit: UnitOfWork, upserted: Optional[UpsertResult] = None):
    """Re-weight every critic that has at least one rating."""
    for critic in repository.critics_with_ratings():
        disparity = relative_disparity(repository.ratings_of_critic(critic), upserted)
        if disparity is None:
            # Nothing to compare against yet
            weight = HIGH_WEIGHT
        else:
            weight = weight_for_disparity(disparity)

        logger.debug("Critic %s disparity=%s weight=%s", critic.id, disparity, weight)
        critic.rating_weight = weight
        unit.register(critic)


def weighted_average(stars, weights) -> Optional[float]:
    """Weighted mean of star ratings, or None when there are no ratings."""
    if len(stars) == 0:
        return None

    weights = np.array(weights, dtype=float)
    weight_total = weights.sum()
    if weight_total == 0:
        raise ArithmeticIndeterminate("Cannot average ratings whose critic weights sum to zero")

    return float(np.dot(np.array(stars, dtype=float), weights) / weight_total)


def update_movie_averages(repository, unit: UnitOfWork):
    """Re-average every movie using the critic weights already in place."""
    for movie in repository.movies():
        ratings = repository.ratings_of_movie(movie)
        try:
            movie.average_rating = weighted_average(
                [r.stars for r in ratings],
                [r.critic.rating_weight for r in ratings],
            )
        except ArithmeticIndeterminate as e:
            raise ArithmeticIndeterminate(f"Movie {movie.id}: {e}") from e

        unit.register(movie)


def get_summary(repository, movie_id: int, critic_id: int) -> Summary:
    critic = repository.find_critic(critic_id)
    if critic is None:
        raise NotFoundError(f"Critic {critic_id} does not exist")

    movie = repository.find_movie(movie_id)
    if movie is None:
        raise NotFoundError(f"Movie {movie_id} does not exist")
    if movie.average_rating is None:
        raise NotFoundError(f"Movie {movie_id} has no average rating")

    return Summary(critic_rating_weight=critic.rating_weight, movie_rating=movie.average_rating)


def recalculate(repository, movie_id: int, critic_id: int, stars: int) -> Summary:
    """
    Record one rating, recompute weights and averages, commit, and summarize.

    Nothing is committed if any step before the commit fails. A summary
    failure is raised after the commit and leaves the data in place.
    """
    unit = UnitOfWork()

    upserted = upsert_rating(repository, unit, movie_id, critic_id, stars)
    update_critic_weights(repository, unit, upserted)
    update_movie_averages(repository, unit)

    repository.commit(unit)

    return get_summary(repository, movie_id, critic_id)
