from django.urls import path

from . import views

app_name = "uploads"

urlpatterns = [
    path("chunk/", views.upload_chunk, name="upload-chunk"),
    path("finalize/", views.finalize_upload, name="finalize-upload"),
]
