import pytest
from io import StringIO
from unittest.mock import patch

from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import DatabaseError
from django.urls import reverse
from rest_framework.test import APIClient

from ratings import engine
from ratings.engine import (
    Summary,
    get_summary,
    recalculate,
    relative_disparity,
    update_critic_weights,
    update_movie_averages,
    upsert_rating,
    weight_for_disparity,
    weighted_average,
)
from ratings.exceptions import ArithmeticIndeterminate, NotFoundError
from ratings.models import Critic, Movie, Rating
from ratings.repository import DjangoRatingRepository, RatingRepository, UnitOfWork


class InMemoryRatingRepository(RatingRepository):
    """
    Repository over unsaved model instances; commit only records what it got.
    """

    def __init__(self, movies=(), critics=(), ratings=()):
        self.movie_map = {m.id: m for m in movies}
        self.critic_map = {c.id: c for c in critics}
        self.rating_list = list(ratings)
        self.committed = None

    def find_movie(self, movie_id):
        return self.movie_map.get(movie_id)

    def find_critic(self, critic_id):
        return self.critic_map.get(critic_id)

    def find_rating(self, movie_id, critic_id):
        for r in self.rating_list:
            if r.movie.id == movie_id and r.critic.id == critic_id:
                return r
        return None

    def create_rating(self, movie_id, critic_id, stars):
        rating = Rating(movie=self.movie_map[movie_id], critic=self.critic_map[critic_id], stars=stars)
        self.rating_list.append(rating)
        return rating

    def movies(self):
        return list(self.movie_map.values())

    def critics_with_ratings(self):
        return [c for c in self.critic_map.values() if self.ratings_of_critic(c)]

    def ratings_of_critic(self, critic):
        return [r for r in self.rating_list if r.critic is critic]

    def ratings_of_movie(self, movie):
        return [r for r in self.rating_list if r.movie is movie]

    def commit(self, unit):
        self.committed = list(unit)


def build_repository(movies, critics, ratings):
    """
    movies: {id: average_rating}, critics: {id: rating_weight},
    ratings: [(movie_id, critic_id, stars), ...]
    """
    movie_objs = {mid: Movie(id=mid, average_rating=avg) for mid, avg in movies.items()}
    critic_objs = {cid: Critic(id=cid, rating_weight=w) for cid, w in critics.items()}
    rating_objs = [
        Rating(movie=movie_objs[mid], critic=critic_objs[cid], stars=stars)
        for mid, cid, stars in ratings
    ]
    return InMemoryRatingRepository(movie_objs.values(), critic_objs.values(), rating_objs)


@pytest.fixture
def scenario_repo():
    # Critic 1 rated movie 1 (avg 3.0) five stars; critic 2 is movie 2's only rater.
    return build_repository(
        movies={1: 3.0, 2: 4.0},
        critics={1: 1.0, 2: 1.0},
        ratings=[(1, 1, 5), (2, 2, 4)],
    )


# --- Weight tiers ---

@pytest.mark.parametrize("disparity, expected", [
    (0.0, 1.0),
    (0.5, 1.0),
    (1.0, 1.0),
    (1.01, 0.33),
    (2.0, 0.33),
    (2.01, 0.15),
    (4.0, 0.15),
])
def test_weight_for_disparity_tiers(disparity, expected):
    assert weight_for_disparity(disparity) == expected


def test_weight_never_increases_with_disparity():
    disparities = [x / 10 for x in range(0, 45)]
    weights = [weight_for_disparity(d) for d in disparities]
    assert all(later <= earlier for earlier, later in zip(weights, weights[1:]))
    assert set(weights) == {1.0, 0.33, 0.15}


# --- Weighted average ---

def test_weighted_average_mixes_weights():
    result = weighted_average([4, 2], [1.0, 0.33])
    assert result == pytest.approx(4.66 / 1.33)
    assert f"{result:.1f}" == "3.5"


def test_weighted_average_without_ratings_is_absent():
    assert weighted_average([], []) is None


def test_weighted_average_zero_weights_raises():
    with pytest.raises(ArithmeticIndeterminate):
        weighted_average([3, 4], [0.0, 0.0])


# --- Rating upsert ---

class TestUpsert:

    def test_creates_missing_rating(self, scenario_repo):
        unit = UnitOfWork()
        result = upsert_rating(scenario_repo, unit, 2, 1, 3)

        assert result.created is True
        assert result.previous_stars is None
        assert scenario_repo.find_rating(2, 1).stars == 3
        assert result.rating in unit

    def test_second_upsert_overwrites(self, scenario_repo):
        upsert_rating(scenario_repo, UnitOfWork(), 2, 1, 3)
        result = upsert_rating(scenario_repo, UnitOfWork(), 2, 1, 5)

        pair = [r for r in scenario_repo.rating_list if r.movie.id == 2 and r.critic.id == 1]
        assert len(pair) == 1
        assert pair[0].stars == 5
        assert result.created is False
        assert result.previous_stars == 3

    def test_unknown_movie(self, scenario_repo):
        with pytest.raises(NotFoundError, match="Movie 99"):
            upsert_rating(scenario_repo, UnitOfWork(), 99, 1, 3)
        assert len(scenario_repo.rating_list) == 2

    def test_unknown_critic(self, scenario_repo):
        with pytest.raises(NotFoundError, match="Critic 99"):
            upsert_rating(scenario_repo, UnitOfWork(), 1, 99, 3)
        assert len(scenario_repo.rating_list) == 2


# --- Critic weights ---

class TestCriticWeights:

    def test_disparity_ignores_movies_without_average(self):
        repo = build_repository(
            movies={1: 3.0, 2: None},
            critics={1: 1.0},
            ratings=[(1, 1, 5), (2, 1, 1)],
        )
        critic = repo.find_critic(1)
        assert relative_disparity(repo.ratings_of_critic(critic)) == pytest.approx(2.0)

    def test_mean_disparity_picks_tier(self):
        repo = build_repository(
            movies={1: 2.0, 2: 4.0},
            critics={1: 1.0},
            ratings=[(1, 1, 5), (2, 1, 1)],
        )
        update_critic_weights(repo, UnitOfWork())
        # (3 + 3) / 2 = 3.0
        assert repo.find_critic(1).rating_weight == 0.15

    def test_no_comparable_ratings_gets_full_weight(self):
        repo = build_repository(
            movies={1: None},
            critics={1: 0.33},
            ratings=[(1, 1, 4)],
        )
        update_critic_weights(repo, UnitOfWork())
        assert repo.find_critic(1).rating_weight == 1.0

    def test_critic_without_ratings_is_untouched(self, scenario_repo):
        lonely = Critic(id=3, rating_weight=0.5)
        scenario_repo.critic_map[3] = lonely
        unit = UnitOfWork()

        update_critic_weights(scenario_repo, unit)

        assert lonely.rating_weight == 0.5
        assert lonely not in unit
        assert scenario_repo.find_critic(1) in unit

    def test_new_rating_is_not_compared_this_run(self, scenario_repo):
        unit = UnitOfWork()
        upserted = upsert_rating(scenario_repo, unit, 2, 1, 1)
        # Only |5 - 3| = 2 counts; with the new rating (2 + 3) / 2 = 2.5 would give 0.15
        update_critic_weights(scenario_repo, unit, upserted)
        assert scenario_repo.find_critic(1).rating_weight == 0.33

    def test_overwritten_rating_compared_at_new_stars(self):
        repo = build_repository(
            movies={1: 2.0},
            critics={1: 1.0},
            ratings=[(1, 1, 5)],
        )
        summary = recalculate(repo, 1, 1, 2)
        # |2 - 2| = 0; the old 5 stars would have given 3.0
        assert summary.critic_rating_weight == 1.0
        assert repo.find_critic(1).rating_weight == 1.0


# --- Movie averages ---

class TestMovieAverages:

    def test_uses_current_critic_weights(self):
        repo = build_repository(
            movies={1: None},
            critics={1: 1.0, 2: 0.33},
            ratings=[(1, 1, 4), (1, 2, 2)],
        )
        update_movie_averages(repo, UnitOfWork())
        assert repo.find_movie(1).average_rating == pytest.approx(4.66 / 1.33)

    def test_unrated_movie_average_is_absent(self, scenario_repo):
        empty = Movie(id=3, average_rating=3.0)
        scenario_repo.movie_map[3] = empty
        unit = UnitOfWork()

        update_movie_averages(scenario_repo, unit)

        assert empty.average_rating is None
        assert empty in unit

    def test_zero_weight_total_raises(self):
        repo = build_repository(
            movies={1: None},
            critics={1: 0.0},
            ratings=[(1, 1, 4)],
        )
        with pytest.raises(ArithmeticIndeterminate, match="Movie 1"):
            update_movie_averages(repo, UnitOfWork())


# --- Whole run ---

class TestRecalculate:

    def test_end_to_end_scenario(self, scenario_repo):
        summary = recalculate(scenario_repo, 2, 1, 1)

        assert summary.critic_rating_weight == 0.33
        assert summary.movie_rating == pytest.approx(4.33 / 1.33)
        assert summary.lines() == [
            "New critic rating weight: 0.3",
            "New movie rating: 3.3",
        ]
        # Movie 1 is now averaged from critic 1's rating alone
        assert scenario_repo.find_movie(1).average_rating == pytest.approx(5.0)

    def test_commits_every_mutation_once(self, scenario_repo):
        recalculate(scenario_repo, 2, 1, 1)

        committed = scenario_repo.committed
        assert len(committed) == len(set(map(id, committed)))
        assert scenario_repo.find_rating(2, 1) in committed
        assert all(c in committed for c in scenario_repo.critic_map.values())
        assert all(m in committed for m in scenario_repo.movie_map.values())

    def test_not_found_commits_nothing(self, scenario_repo):
        with pytest.raises(NotFoundError):
            recalculate(scenario_repo, 99, 1, 1)
        assert scenario_repo.committed is None

    def test_summary_requires_average(self):
        repo = build_repository(movies={1: None}, critics={1: 1.0}, ratings=[])
        with pytest.raises(NotFoundError, match="no average"):
            get_summary(repo, 1, 1)


# --- Django repository ---

@pytest.fixture
def seeded(db):
    a = Movie.objects.create(id=1, title="A", average_rating=3.0)
    b = Movie.objects.create(id=2, title="B", average_rating=4.0)
    Movie.objects.create(id=3, title="Unrated")
    c = Critic.objects.create(id=1, name="C")
    d = Critic.objects.create(id=2, name="D")
    Critic.objects.create(id=3, name="Silent", rating_weight=0.33)
    Rating.objects.create(movie=a, critic=c, stars=5)
    Rating.objects.create(movie=b, critic=d, stars=4)


@pytest.mark.django_db
class TestDjangoRepository:

    def test_shares_instances_between_lookups(self, seeded):
        repo = DjangoRatingRepository()
        rating = repo.find_rating(1, 1)

        assert rating.movie is repo.find_movie(1)
        assert rating.critic is repo.find_critic(1)
        assert repo.ratings_of_movie(repo.find_movie(1)) == [rating]

    def test_critics_with_ratings_skips_silent_critics(self, seeded):
        repo = DjangoRatingRepository()
        assert [c.id for c in repo.critics_with_ratings()] == [1, 2]

    def test_created_rating_is_reachable_before_commit(self, seeded):
        repo = DjangoRatingRepository()
        rating = repo.create_rating(2, 1, 3)

        assert repo.find_rating(2, 1) is rating
        assert rating in repo.ratings_of_critic(repo.find_critic(1))
        assert Rating.objects.count() == 2

    def test_recalculate_persists(self, seeded):
        summary = recalculate(DjangoRatingRepository(), 2, 1, 1)

        assert summary.critic_rating_weight == 0.33
        assert summary.movie_rating == pytest.approx(4.33 / 1.33)
        assert Rating.objects.get(movie_id=2, critic_id=1).stars == 1
        assert Movie.objects.get(id=2).average_rating == pytest.approx(4.33 / 1.33)
        assert Movie.objects.get(id=3).average_rating is None
        assert Critic.objects.get(id=3).rating_weight == 0.33

    def test_failed_commit_rolls_back(self, seeded):
        with patch.object(Movie, 'save', side_effect=DatabaseError("disk full")):
            with pytest.raises(DatabaseError):
                recalculate(DjangoRatingRepository(), 2, 1, 1)

        assert Rating.objects.count() == 2
        assert not Rating.objects.filter(movie_id=2, critic_id=1).exists()
        assert Movie.objects.get(id=2).average_rating == 4.0


# --- Commands ---

@pytest.mark.django_db
class TestRateMovieCommand:

    def run(self, *args):
        out = StringIO()
        call_command('rate_movie', *args, stdout=out)
        return out.getvalue()

    def test_prints_summary(self, seeded):
        output = self.run('2', '1', '1')
        assert output == "New critic rating weight: 0.3\nNew movie rating: 3.3\n"

    def test_rerating_keeps_one_rating(self, seeded):
        self.run('2', '1', '1')
        self.run('2', '1', '3')
        assert Rating.objects.filter(movie_id=2, critic_id=1).count() == 1
        assert Rating.objects.get(movie_id=2, critic_id=1).stars == 3

    def test_stars_out_of_range(self, seeded):
        output = self.run('2', '1', '9')
        assert "stars must be between 1 and 5" in output
        assert not Rating.objects.filter(movie_id=2, critic_id=1).exists()

    def test_unknown_movie_is_reported(self, seeded):
        output = self.run('99', '1', '3')
        assert output.strip() == "Movie 99 does not exist"
        assert Rating.objects.count() == 2

    def test_summary_failure_keeps_committed_changes(self, seeded):
        with patch.object(engine, 'get_summary', side_effect=NotFoundError("Movie 2 has no average rating")):
            output = self.run('2', '1', '1')

        assert output.strip() == "Movie 2 has no average rating"
        assert Rating.objects.get(movie_id=2, critic_id=1).stars == 1
        assert Movie.objects.get(id=2).average_rating == pytest.approx(4.33 / 1.33)

    def test_database_failure_is_reported(self, seeded):
        with patch.object(Movie, 'save', side_effect=DatabaseError("disk full")):
            output = self.run('2', '1', '1')

        assert output.strip() == "disk full"
        assert not Rating.objects.filter(movie_id=2, critic_id=1).exists()

    def test_non_integer_argument(self, seeded):
        output = self.run('two', '1', '1')
        assert output.strip() == "Must be 3 int arguments: movieId, criticId, stars"
        assert Rating.objects.count() == 2

    def test_missing_argument(self, seeded):
        output = self.run('2', '1')
        assert output.strip() == "Must be 3 int arguments: movieId, criticId, stars"

    def test_too_many_arguments(self, seeded):
        output = self.run('2', '1', '3', '4')
        assert output.strip() == "Must be 3 int arguments: movieId, criticId, stars"
        assert not Rating.objects.filter(movie_id=2, critic_id=1).exists()


@pytest.mark.django_db
def test_import_data(tmp_path):
    (tmp_path / 'movies.csv').write_text("movieId,title,averageRating\n1,Toy Story,3.5\n2,Heat,\n")
    (tmp_path / 'critics.csv').write_text("criticId,name,ratingWeight\n1,Ebert,\n2,Kael,0.33\n")
    (tmp_path / 'ratings.csv').write_text("movieId,criticId,stars\n1,1,4\n2,2,3\n7,1,5\n")

    call_command('import_data', data_dir=str(tmp_path), stdout=StringIO())

    assert Movie.objects.get(id=1).average_rating == 3.5
    assert Movie.objects.get(id=2).average_rating is None
    assert Critic.objects.get(id=1).rating_weight == 1.0
    assert Critic.objects.get(id=2).rating_weight == 0.33
    assert Rating.objects.count() == 2


@pytest.mark.django_db
def test_import_data_missing_file(tmp_path):
    with pytest.raises(CommandError, match="movies.csv"):
        call_command('import_data', data_dir=str(tmp_path), stdout=StringIO())


# --- API ---

@pytest.fixture
def client():
    return APIClient()


@pytest.mark.django_db
class TestSummaryAPI:

    def test_critic_detail(self, client, seeded):
        response = client.get(reverse('critic_detail', args=[1]))

        assert response.status_code == 200
        assert response.data == {"id": 1, "name": "C", "rating_weight": 1.0, "ratings_count": 1}

    def test_movie_without_ratings(self, client, seeded):
        response = client.get(reverse('movie_detail', args=[3]))

        assert response.status_code == 200
        assert response.data["average_rating"] is None
        assert response.data["ratings_count"] == 0

    def test_movie_reflects_recalculation(self, client, seeded):
        call_command('rate_movie', '2', '1', '1', stdout=StringIO())
        response = client.get(reverse('movie_detail', args=[2]))

        assert response.data["average_rating"] == pytest.approx(4.33 / 1.33)
        assert response.data["ratings_count"] == 2

    def test_unknown_ids(self, client, seeded):
        assert client.get(reverse('critic_detail', args=[99])).status_code == 404
        assert client.get(reverse('movie_detail', args=[99])).status_code == 404


def test_summary_lines_round_to_one_decimal():
    assert Summary(0.33, 4.66 / 1.33).lines() == [
        "New critic rating weight: 0.3",
        "New movie rating: 3.5",
    ]
