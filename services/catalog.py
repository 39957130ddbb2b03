"""
Read side of the station/port catalog.

The engine only ever asks "does this port exist, and what station is it
on"; writes to the catalog happen in routes/stations.py.
"""
from models import db
from models.port import Port
from models.station import Station
from services.errors import NotFoundError
from utils.retry import call_with_retry, translate_db_errors


class CatalogStore:
    def __init__(self, retry_attempts: int = 3, retry_backoff: float = 0.05):
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff

    def _read(self, fn, *args):
        return call_with_retry(
            translate_db_errors("Catalog lookup")(fn), *args,
            attempts=self.retry_attempts, backoff_seconds=self.retry_backoff,
        )

    def get_station(self, station_id: int):
        return self._read(db.session.get, Station, station_id)

    def get_port(self, port_id: int):
        return self._read(db.session.get, Port, port_id)

    def require_station(self, station_id: int) -> Station:
        station = self.get_station(station_id)
        if station is None:
            raise NotFoundError("Station not found", station_id=station_id)
        return station

    def require_port(self, port_id: int) -> Port:
        port = self.get_port(port_id)
        if port is None:
            raise NotFoundError("Port not found", port_id=port_id)
        if self.get_station(port.station_id) is None:
            raise NotFoundError("Station not found", station_id=port.station_id)
        return port

    def list_stations(self):
        return self._read(lambda: Station.query.order_by(Station.id.asc()).all())

    def ports_for_station(self, station_id: int):
        return self._read(
            lambda: Port.query.filter_by(station_id=station_id).order_by(Port.id.asc()).all()
        )
