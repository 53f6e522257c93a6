from django.urls import path
from . import views

urlpatterns = [
    path('critics/<int:critic_id>/', views.critic_detail, name='critic_detail'),
    path('movies/<int:movie_id>/', views.movie_detail, name='movie_detail'),
]
