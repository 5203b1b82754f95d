from django.urls import path

from .views import UpdatePasswordView

urlpatterns = [
    path("update-password", UpdatePasswordView.as_view(), name="update-password"),
]
