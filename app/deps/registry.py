from typing import Annotated

from fastapi import Depends

from app.factories import registry_relay_factory
from app.packages.registry_proxy import RegistryRelay


def get_registry_relay() -> RegistryRelay:
    return registry_relay_factory()


RelayDep = Annotated[RegistryRelay, Depends(get_registry_relay)]
