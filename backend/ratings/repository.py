import logging
from abc import ABC, abstractmethod
from collections import defaultdict

from django.db import transaction

from .models import Critic, Movie, Rating

logger = logging.getLogger(__name__)


class UnitOfWork:
    """
    Pending mutations of one invocation.

    Each model instance is registered at most once; registration order is
    kept so new ratings are written in the order they were made.
    """

    def __init__(self):
        self._pending = {}

    def register(self, instance):
        self._pending.setdefault(id(instance), instance)

    def __iter__(self):
        return iter(list(self._pending.values()))

    def __len__(self):
        return len(self._pending)

    def __contains__(self, instance):
        return id(instance) in self._pending


class RatingRepository(ABC):
    """
    Persistence collaborator used by the rating engine.

    Implementations must hand out the same instance every time a given movie,
    critic or rating is reached, whether by lookup or by navigating from a
    related object. The engine relies on this to see its own writes.
    """

    @abstractmethod
    def find_movie(self, movie_id):
        ...

    @abstractmethod
    def find_critic(self, critic_id):
        ...

    @abstractmethod
    def find_rating(self, movie_id, critic_id):
        ...

    @abstractmethod
    def create_rating(self, movie_id, critic_id, stars):
        """Create a rating for an existing movie and critic and return it."""
        ...

    @abstractmethod
    def movies(self):
        ...

    @abstractmethod
    def critics_with_ratings(self):
        ...

    @abstractmethod
    def ratings_of_critic(self, critic):
        ...

    @abstractmethod
    def ratings_of_movie(self, movie):
        ...

    @abstractmethod
    def commit(self, unit):
        """Persist every instance in ``unit`` atomically, or nothing."""
        ...


class DjangoRatingRepository(RatingRepository):
    """
    ORM-backed repository holding the whole dataset in memory for one run.

    Movies, critics and ratings are loaded once; ratings are wired to the
    shared movie and critic instances so that a critic reached through
    ``ratings_of_movie`` carries the weight set earlier in the same run.
    """

    def __init__(self, using='default'):
        self.using = using
        self._movies = None
        self._critics = None
        self._ratings = None
        self._by_critic = None
        self._by_movie = None

    def _load(self):
        if self._movies is not None:
            return

        self._movies = {m.id: m for m in Movie.objects.using(self.using).order_by('id')}
        self._critics = {c.id: c for c in Critic.objects.using(self.using).order_by('id')}
        self._ratings = {}
        self._by_critic = defaultdict(list)
        self._by_movie = defaultdict(list)

        for rating in Rating.objects.using(self.using).order_by('id'):
            # Assigning the shared instances fills the FK cache, so rating.movie
            # and rating.critic never hit the database again.
            rating.movie = self._movies[rating.movie_id]
            rating.critic = self._critics[rating.critic_id]
            self._index(rating)

        logger.debug(
            "Loaded %d movies, %d critics, %d ratings",
            len(self._movies), len(self._critics), len(self._ratings),
        )

    def _index(self, rating):
        self._ratings[(rating.movie_id, rating.critic_id)] = rating
        self._by_critic[rating.critic_id].append(rating)
        self._by_movie[rating.movie_id].append(rating)

    def find_movie(self, movie_id):
        self._load()
        return self._movies.get(movie_id)

    def find_critic(self, critic_id):
        self._load()
        return self._critics.get(critic_id)

    def find_rating(self, movie_id, critic_id):
        self._load()
        return self._ratings.get((movie_id, critic_id))

    def create_rating(self, movie_id, critic_id, stars):
        self._load()
        rating = Rating(movie=self._movies[movie_id], critic=self._critics[critic_id], stars=stars)
        self._index(rating)
        return rating

    def movies(self):
        self._load()
        return list(self._movies.values())

    def critics_with_ratings(self):
        self._load()
        return [c for c in self._critics.values() if self._by_critic.get(c.id)]

    def ratings_of_critic(self, critic):
        self._load()
        return list(self._by_critic.get(critic.id, []))

    def ratings_of_movie(self, movie):
        self._load()
        return list(self._by_movie.get(movie.id, []))

    def commit(self, unit):
        with transaction.atomic(using=self.using):
            for instance in unit:
                instance.save(using=self.using)
        logger.info("Committed %d pending changes", len(unit))
