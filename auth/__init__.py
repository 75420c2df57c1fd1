"""auth/ -- Credential and token subsystem for Storekeeper.

Layer rule: auth/ imports only stdlib + third-party libraries, plus core/
for Settings in service.build_auth_service(). It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
