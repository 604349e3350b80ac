"""Services: remote protocol, local storage, persistence and the sync engine."""
