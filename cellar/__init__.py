"""Wine cellar inventory API (run with ``uvicorn cellar.app:create_app --factory``)."""
