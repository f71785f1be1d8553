from typing import Iterable, List, Optional

from arborist_permits.permits.models import PermitRecord


def point_geometry(coords: Optional[List[float]]) -> Optional[dict]:
    if not coords or len(coords) != 2:
        return None
    return {"type": "Point", "coordinates": [float(coords[0]), float(coords[1])]}


def to_feature(record: PermitRecord) -> Optional[dict]:
    geometry = point_geometry(record.coords)
    if geometry is None:
        return None
    return {
        "type": "Feature",
        "properties": record.feature_properties(),
        "geometry": geometry,
    }


def to_featurecollection(records: Iterable[PermitRecord], **members) -> dict:
    """FeatureCollection of every record that has coordinates.

    Extra keyword arguments become top-level foreign members (GeoJSON allows
    them), which is how snapshots carry their full key list.
    """

    features = []
    for record in records:
        feature = to_feature(record)
        if feature is not None:
            features.append(feature)
    collection = {"type": "FeatureCollection", "features": features}
    collection.update(members)
    return collection
