"""ORM model registry -- import all models so Alembic autogenerate discovers them."""

from location_api.models.address_component import AddressComponent
from location_api.models.location import Location, LocationClosure
from location_api.models.location_address_component import LocationAddressComponent

__all__ = [
    "AddressComponent",
    "Location",
    "LocationAddressComponent",
    "LocationClosure",
]
