"""Approval routing services used by the blueprints."""
