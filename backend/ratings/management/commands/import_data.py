import csv
import os

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from ratings.models import Critic, Movie, Rating


def _optional_float(value):
    value = (value or '').strip()
    return float(value) if value else None


class Command(BaseCommand):
    help = 'Seed movies, critics and ratings from CSV files'

    def add_arguments(self, parser):
        parser.add_argument('--data-dir', default=None, help='Directory holding movies.csv, critics.csv and ratings.csv')

    def handle(self, *args, **options):
        data_dir = options['data_dir'] or settings.RATINGS_DATA_DIR

        movies_path = os.path.join(data_dir, 'movies.csv')
        critics_path = os.path.join(data_dir, 'critics.csv')
        ratings_path = os.path.join(data_dir, 'ratings.csv')

        for path in (movies_path, critics_path, ratings_path):
            if not os.path.exists(path):
                raise CommandError(f"{path} not found")

        # 1. Movies
        self.stdout.write("Importing Movies...")
        movies_to_create = []
        with open(movies_path, 'r', encoding='utf-8') as f:
            reader = csv.DictReader(f)
            for row in reader:
                movies_to_create.append(Movie(
                    id=int(row['movieId']),
                    title=row.get('title') or '',
                    average_rating=_optional_float(row.get('averageRating')),
                ))

        # Ignore conflicts so the import can be re-run
        Movie.objects.bulk_create(movies_to_create, ignore_conflicts=True)
        self.stdout.write(f"Imported {len(movies_to_create)} movies.")

        # 2. Critics
        self.stdout.write("Importing Critics...")
        critics_to_create = []
        with open(critics_path, 'r', encoding='utf-8') as f:
            reader = csv.DictReader(f)
            for row in reader:
                weight = _optional_float(row.get('ratingWeight'))
                critics_to_create.append(Critic(
                    id=int(row['criticId']),
                    name=row.get('name') or '',
                    rating_weight=1.0 if weight is None else weight,
                ))

        Critic.objects.bulk_create(critics_to_create, ignore_conflicts=True)
        self.stdout.write(f"Imported {len(critics_to_create)} critics.")

        # 3. Ratings, only for movies and critics that exist
        self.stdout.write("Importing Ratings...")
        movie_ids = set(Movie.objects.values_list('id', flat=True))
        critic_ids = set(Critic.objects.values_list('id', flat=True))

        ratings_to_create = []
        skipped = 0
        with open(ratings_path, 'r', encoding='utf-8') as f:
            reader = csv.DictReader(f)
            for row in reader:
                mid = int(row['movieId'])
                cid = int(row['criticId'])
                if mid not in movie_ids or cid not in critic_ids:
                    skipped += 1
                    continue

                ratings_to_create.append(Rating(movie_id=mid, critic_id=cid, stars=int(row['stars'])))

                if len(ratings_to_create) >= 5000:
                    Rating.objects.bulk_create(ratings_to_create, ignore_conflicts=True)
                    ratings_to_create = []
                    self.stdout.write(".", ending='')

        if ratings_to_create:
            Rating.objects.bulk_create(ratings_to_create, ignore_conflicts=True)

        if skipped:
            self.stdout.write(self.style.WARNING(f"\nSkipped {skipped} ratings with unknown movie or critic."))

        self.stdout.write("\nDone!")
