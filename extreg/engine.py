__all__ = [
    'SQLDB_ENGINE',
    'SessionLocal',
]

import sqlmodel
from extreg.settings import config


SQLDB_ENGINE = sqlmodel.create_engine(
    config.db_url,
    connect_args=(
        {"options": f"-csearch_path={config.db_schema}"} if config.is_postgres else {}
    ),
)

def SessionLocal():
    return sqlmodel.Session(SQLDB_ENGINE, expire_on_commit=False)
