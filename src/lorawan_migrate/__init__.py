"""LoRaWAN Migration Tool

Moves LoRaWAN device records, join credentials and profile references from
one ChirpStack-style device-management backend to another, over either the
gRPC or the REST flavour of the backend API.
"""

__version__ = '0.1.0'
__author__ = 'LoRaWAN Migration Team'
__email__ = 'team@example.com'

from .cli.main import main

__all__ = ['main']
