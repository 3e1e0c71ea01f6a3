"""Real-time "pick a random participant" rooms.

Rooms, participant presence and the roulette protocol live here; the FastAPI
surface is in `roulette.api` and the app factory in `roulette.main`.
"""
