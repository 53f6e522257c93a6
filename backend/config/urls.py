from django.urls import include, path

urlpatterns = [
    path('api/ratings/', include('ratings.urls')),
]
