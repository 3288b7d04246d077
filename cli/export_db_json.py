import json
import sys

from sqlalchemy import select

from cafe.engine.db_engine import DBStorage, classes
from resources.constants import DATABASE_URL


def export_to_json(storage, json_path="database_export.json"):
    """
    Dump every row of every table, cancelled rows included, to a JSON file
    keyed by table name. Money is written as strings so no cent is lost.
    :return: The exported data.
    """

    all_data = {}
    with storage.unit_of_work() as uow:
        for cls in classes.values():
            rows = uow.scalars(select(cls).order_by(cls.created_at, cls.id))
            all_data[cls.__tablename__] = [row.to_dict() for row in rows]

    with open(json_path, "w") as f:
        json.dump(all_data, f, indent=2, default=str)
    return all_data


if __name__ == "__main__":
    url = sys.argv[1] if len(sys.argv) > 1 else DATABASE_URL
    db = DBStorage(url)
    db.reload()
    data = export_to_json(db)
    print(
        "Export completed successfully! "
        + ", ".join(f"{table}: {len(rows)}" for table, rows in data.items())
    )
