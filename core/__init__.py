"""Shared configuration for the proxy service."""
