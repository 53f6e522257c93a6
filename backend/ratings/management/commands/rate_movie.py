import logging

from django.conf import settings
from django.core.management.base import BaseCommand
from django.db import DatabaseError

from ratings.engine import recalculate
from ratings.exceptions import RatingEngineError, ValidationError
from ratings.repository import DjangoRatingRepository

logger = logging.getLogger(__name__)

USAGE = "Must be 3 int arguments: movieId, criticId, stars"


class Command(BaseCommand):
    help = "Record a critic's rating for a movie and recalculate critic weights and movie averages"

    def add_arguments(self, parser):
        # Parsed in handle() so malformed input is reported like any other error
        parser.add_argument('args', nargs='*', metavar='movie_id critic_id stars')

    def handle(self, *args, **options):
        try:
            movie_id, critic_id, stars = self.parse_input(args)
            self.validate_stars(stars)
            summary = recalculate(DjangoRatingRepository(), movie_id, critic_id, stars)
        except RatingEngineError as e:
            logger.warning("rate_movie %s failed: %s", " ".join(args), e)
            self.stdout.write(str(e))
            return
        except DatabaseError as e:
            logger.exception("rate_movie %s could not be committed", " ".join(args))
            self.stdout.write(str(e))
            return

        for line in summary.lines():
            self.stdout.write(line)

    def parse_input(self, args):
        if len(args) != 3:
            raise ValidationError(USAGE)
        try:
            return tuple(int(a) for a in args)
        except ValueError:
            raise ValidationError(USAGE) from None

    def validate_stars(self, stars):
        low, high = settings.RATINGS_MIN_STARS, settings.RATINGS_MAX_STARS
        if not low <= stars <= high:
            raise ValidationError(f"stars must be between {low} and {high}, got {stars}")
