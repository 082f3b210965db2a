"""SQLAlchemy gateway for the ``saved_plots`` table.

Rows are only ever inserted and listed; the chart spec is stored as JSON text
in ``plot_json`` and decoded again on the way out.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List

from sqlalchemy import Column, DateTime, Integer, String, Text, create_engine, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from plotchat.errors import PersistenceError

logger = logging.getLogger(__name__)

Base = declarative_base()


class SavedPlotRecord(Base):
    __tablename__ = "saved_plots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    plot_name = Column(String(255), nullable=False)
    plot_json = Column(Text, nullable=False)
    date = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        spec = self.plot_json
        if isinstance(spec, str):
            spec = json.loads(spec)
        return {
            "id": self.id,
            "name": self.plot_name,
            "spec": spec,
            "created_at": self.date.isoformat() if self.date is not None else None,
        }


class PlotStore:
    """Insert and list saved plots; every storage fault becomes ``PersistenceError``."""

    def __init__(self, database_url: str, *, create_tables: bool = True):
        try:
            self._engine = create_engine(database_url, pool_pre_ping=True)
            self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
            if create_tables:
                Base.metadata.create_all(self._engine)
        except SQLAlchemyError as exc:
            raise PersistenceError(str(exc)) from exc

    def save_plot(self, name: str, spec: Dict[str, Any]) -> Dict[str, Any]:
        record = SavedPlotRecord(plot_name=name, plot_json=json.dumps(spec))
        try:
            with self._session_factory() as session:
                session.add(record)
                session.commit()
                session.refresh(record)
                saved = record.to_dict()
        except SQLAlchemyError as exc:
            logger.exception("Failed to save plot %r", name)
            raise PersistenceError(str(exc)) from exc
        logger.info("Saved plot %s (%r)", saved["id"], name)
        return saved

    def list_plots(self) -> List[Dict[str, Any]]:
        query = select(SavedPlotRecord).order_by(SavedPlotRecord.date.desc(), SavedPlotRecord.id.desc())
        try:
            with self._session_factory() as session:
                records = session.scalars(query).all()
                return [record.to_dict() for record in records]
        except (SQLAlchemyError, ValueError) as exc:
            logger.exception("Failed to list saved plots")
            raise PersistenceError(str(exc)) from exc

    def close(self) -> None:
        self._engine.dispose()
