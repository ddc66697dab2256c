"""Backend lookup by tag."""
from auditledger.backends import aws, azure
from auditledger.backends.profile import BackendProfile
from auditledger.core.errors import ValidationError

BACKENDS: dict[str, BackendProfile] = {
    aws.PROFILE.name: aws.PROFILE,
    azure.PROFILE.name: azure.PROFILE,
}


def get_backend(name: str) -> BackendProfile:
    try:
        return BACKENDS[name]
    except KeyError:
        raise ValidationError.single(
            "backend",
            "backend",
            f"Unknown backend {name!r}; expected one of {sorted(BACKENDS)}",
        ) from None
