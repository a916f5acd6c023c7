"""Bearer-token authentication for service clients (scrapers, the review console)."""

import logging

from ninja.security import HttpBearer

from events.models import ServiceToken

logger = logging.getLogger(__name__)


class ServiceTokenAuth(HttpBearer):
    """Accept requests whose Bearer token matches a ServiceToken."""

    def authenticate(self, request, token):
        service_token = ServiceToken.objects.filter(token=token).first()
        if service_token is None:
            logger.warning("Rejected request with an unknown service token")
        return service_token
