from unittest.mock import AsyncMock, Mock
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from app.main import app, rate_limiter
from app.routers.onboarding import get_onboarding_service
from app.services.auth_service import OrgContext, load_org_context
from app.services.errors import ChannelConflictError, InvalidInputError
from app.services.onboarding_service import OnboardingError

ORG_ID = uuid4()


@pytest.fixture(autouse=True)
def _clean_app():
    rate_limiter.reset()
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def service():
    service = Mock()
    service.connect_whatsapp = AsyncMock()
    app.dependency_overrides[get_onboarding_service] = lambda: service
    return service


@pytest.fixture
def client():
    return TestClient(app)


def _as_role(role):
    app.dependency_overrides[load_org_context] = lambda: OrgContext(org_id=ORG_ID, role=role, user_id=uuid4())


class TestOnboardEndpoint:
    def test_owner_connects_channel(self, client, service):
        _as_role("owner")
        channel_id = uuid4()
        service.connect_whatsapp.return_value = Mock(id=channel_id, phone_number_id="1000001", status="connected")

        response = client.post("/api/onboard", json={"code": "c", "phone_number_id": "1000001", "waba_id": "w"})

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "channel_id": str(channel_id),
            "phone_number_id": "1000001",
            "status": "connected",
        }
        service.connect_whatsapp.assert_awaited_once_with(ORG_ID, "c", "1000001", "w")

    def test_member_is_forbidden(self, client, service):
        _as_role("member")

        response = client.post("/api/onboard", json={"code": "c", "phone_number_id": "1", "waba_id": "w"})

        assert response.status_code == 403
        assert response.json() == {"error": "Insufficient permissions"}
        service.connect_whatsapp.assert_not_called()

    def test_missing_code_is_400(self, client, service):
        _as_role("admin")
        service.connect_whatsapp.side_effect = InvalidInputError("Missing OAuth code")

        response = client.post("/api/onboard", json={})

        assert response.status_code == 400
        assert response.json() == {"error": "Missing OAuth code"}

    def test_graph_failure_is_500(self, client, service):
        _as_role("owner")
        service.connect_whatsapp.side_effect = OnboardingError("code expired")

        response = client.post("/api/onboard", json={"code": "c", "phone_number_id": "1", "waba_id": "w"})

        assert response.status_code == 500
        assert response.json() == {"error": "WhatsApp onboarding failed"}

    def test_number_owned_elsewhere_is_409(self, client, service):
        _as_role("owner")
        service.connect_whatsapp.side_effect = ChannelConflictError(
            "This WhatsApp number is already connected to another organization"
        )

        response = client.post("/api/onboard", json={"code": "c", "phone_number_id": "1", "waba_id": "w"})

        assert response.status_code == 409
        assert response.json() == {"error": "This WhatsApp number is already connected to another organization"}
