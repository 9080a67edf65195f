"""
Persistence Module
==================
"""
from .gateway import PersistenceGateway, InMemoryGateway, JsonLinesGateway
from .sink import PersistenceSink

__all__ = [
    'PersistenceGateway',
    'InMemoryGateway',
    'JsonLinesGateway',
    'PersistenceSink'
]
