# stockledger/db/base.py
from __future__ import annotations

import importlib
import logging
import pkgutil
from typing import Iterable, Iterator, List, Set

from sqlalchemy.orm import DeclarativeBase, configure_mappers

log = logging.getLogger("stockledger.models")


class Base(DeclarativeBase):
    """Single ORM Base for the whole project."""

    pass


_INITIALIZED: bool = False


def _iter_model_modules(pkg_name: str = "stockledger.models") -> Iterator[str]:
    pkg = importlib.import_module(pkg_name)
    for _, name, _ in pkgutil.walk_packages(getattr(pkg, "__path__", []), prefix=pkg_name + "."):
        if name.rsplit(".", 1)[-1].startswith("_"):
            continue
        yield name


def init_models(*, extra_modules: Iterable[str] | None = None, force: bool = False) -> None:
    """
    Import every model module and configure mappers once:
      1) explicit chain first (string relationship targets must be registered)
      2) then anything else under stockledger.models
      3) configure_mappers()
    """
    global _INITIALIZED
    if _INITIALIZED and not force:
        return

    loaded: List[str] = []
    seen: Set[str] = set()
    explicit_chain = [
        "stockledger.models.warehouse",
        "stockledger.models.item",
        "stockledger.models.batch",
        "stockledger.models.reservation",
        "stockledger.models.stock_ledger",
        "stockledger.models.counter",
    ]
    for mod in [*explicit_chain, *_iter_model_modules(), *(extra_modules or [])]:
        if mod in seen:
            continue
        seen.add(mod)
        importlib.import_module(mod)
        loaded.append(mod)

    configure_mappers()
    _INITIALIZED = True
    log.info("ORM models initialized & mappers configured (loaded %d modules)", len(loaded))
