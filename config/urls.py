from django.contrib import admin
from django.urls import path, include
from ninja import NinjaAPI
from api.views import router as api_router


# Routes declare their own authentication (service tokens).
api = NinjaAPI(title="Trivia venue directory")
api.add_router("/v1/", api_router)


urlpatterns = [
    path("grappelli/", include("grappelli.urls")),
    path("admin/", admin.site.urls),
    path("api/", api.urls),
]
