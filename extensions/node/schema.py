import sqlalchemy
import sqlmodel
from typing import Optional as Opt


class NodeModel(sqlmodel.SQLModel, table=True):
    __tablename__ = 'node'  # type: ignore

    id: Opt[int] = sqlmodel.Field(
        sa_column=sqlmodel.Column(sqlmodel.Integer, primary_key=True, autoincrement=True),
        default=None
    )
    type: str = sqlmodel.Field(
        sa_column=sqlalchemy.Column(sqlalchemy.Text, nullable=False)
    )
    title: str = sqlmodel.Field(
        sa_column=sqlalchemy.Column(sqlalchemy.Text, nullable=False)
    )
    body: str = sqlmodel.Field(default="", sa_column=sqlalchemy.Column(sqlalchemy.Text))
