"""Starpath progress service: course progression, star rewards and badges."""
