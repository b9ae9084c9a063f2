#!/usr/bin/env python
"""
Command line entry point for the Laki Health backend.

Points Django at ``lakihealth.settings`` and hands over to the management
utility (``runserver``, ``migrate``, ``seed_clinic``, ``expiry_sweep`` ...).
"""
import os
import sys


def main() -> None:
    """Run administrative tasks for the clinic backend."""
    os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'lakihealth.settings')
    try:
        from django.core.management import execute_from_command_line  # type: ignore
    except ImportError as exc:
        raise ImportError(
            "Couldn't import Django. Is it installed and available on your "
            "PYTHONPATH? Did you forget to activate a virtual environment?"
        ) from exc
    execute_from_command_line(sys.argv)


if __name__ == '__main__':
    main()
