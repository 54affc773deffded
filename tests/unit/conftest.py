from typing import Dict, Optional

import pytest
from lightkube.models.meta_v1 import ObjectMeta
from lightkube.models.networking_v1 import (
    HTTPIngressPath,
    HTTPIngressRuleValue,
    IngressBackend,
    IngressRule,
    IngressServiceBackend,
    IngressSpec,
    ServiceBackendPort,
)
from lightkube.resources.networking_v1 import Ingress

from resolver import AuthSSLCert, SecretNotFoundError

DEFAULT_DEMO_SECRET = "default/demo-secret"


class MockSecret:
    """Resolver that only knows about the demo secret."""

    def get_auth_certificate(self, name: str) -> AuthSSLCert:
        if name != DEFAULT_DEMO_SECRET:
            raise SecretNotFoundError(f"there is no secret with name {name}")

        return AuthSSLCert(
            secret=DEFAULT_DEMO_SECRET,
            ca_file_name="/ssl/ca.crt",
            ca_sha="abc",
        )


def build_ingress(
    annotations: Optional[Dict[str, str]] = None, namespace: str = "default"
) -> Ingress:
    backend = IngressBackend(
        service=IngressServiceBackend(
            name="default-backend",
            port=ServiceBackendPort(number=80),
        )
    )
    return Ingress(
        metadata=ObjectMeta(name="foo", namespace=namespace, annotations=annotations),
        spec=IngressSpec(
            defaultBackend=backend,
            rules=[
                IngressRule(
                    host="foo.bar.com",
                    http=HTTPIngressRuleValue(
                        paths=[HTTPIngressPath(path="/foo", pathType="Prefix", backend=backend)]
                    ),
                )
            ],
        ),
    )


@pytest.fixture
def mock_secret():
    return MockSecret()
