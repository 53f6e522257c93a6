from django.db import models


class Movie(models.Model):
    id = models.IntegerField(primary_key=True)  # movieId as seeded
    title = models.CharField(max_length=255, blank=True, default='')
    # NULL until the movie has been rated by a critic with a known weight
    average_rating = models.FloatField(null=True, blank=True)

    def __str__(self):
        return self.title or f"Movie {self.id}"


class Critic(models.Model):
    id = models.IntegerField(primary_key=True)  # criticId as seeded
    name = models.CharField(max_length=255, blank=True, default='')
    rating_weight = models.FloatField(default=1.0)

    def __str__(self):
        return self.name or f"Critic {self.id}"


class Rating(models.Model):
    movie = models.ForeignKey(Movie, on_delete=models.CASCADE, related_name='ratings')
    critic = models.ForeignKey(Critic, on_delete=models.CASCADE, related_name='ratings')
    stars = models.IntegerField()

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['movie', 'critic'], name='unique_rating_per_movie_critic'),
        ]

    def __str__(self):
        return f"{self.critic} - {self.movie}: {self.stars}"
