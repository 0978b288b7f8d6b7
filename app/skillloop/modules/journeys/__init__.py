"""Employee journeys: phased onboarding and development cycles."""
