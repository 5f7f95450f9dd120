"""Clients for the services this core collaborates with."""
