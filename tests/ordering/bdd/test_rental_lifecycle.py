"""BDD tests for the rental lifecycle."""

from pytest_bdd import scenarios

scenarios("features/rental_lifecycle.feature")
