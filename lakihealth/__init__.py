"""Django project package for the Laki Health patient-flow backend."""
