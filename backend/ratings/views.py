from django.db.models import Count
from django.shortcuts import get_object_or_404
from rest_framework.decorators import api_view
from rest_framework.response import Response

from .models import Critic, Movie


@api_view(['GET'])
def critic_detail(request, critic_id):
    """
    GET /api/ratings/critics/<id>/
    """
    critic = get_object_or_404(Critic.objects.annotate(ratings_count=Count('ratings')), id=critic_id)

    return Response({
        "id": critic.id,
        "name": critic.name,
        "rating_weight": critic.rating_weight,
        "ratings_count": critic.ratings_count,
    })


@api_view(['GET'])
def movie_detail(request, movie_id):
    """
    GET /api/ratings/movies/<id>/

    average_rating is null until the movie has been rated.
    """
    movie = get_object_or_404(Movie.objects.annotate(ratings_count=Count('ratings')), id=movie_id)

    return Response({
        "id": movie.id,
        "title": movie.title,
        "average_rating": movie.average_rating,
        "ratings_count": movie.ratings_count,
    })
