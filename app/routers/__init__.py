"""
routers/ — one APIRouter per resource, mounted by main.py.

Handlers parse the request, resolve the caller's AuthContext, call into
services/ where there is business logic, and serialize with serializers.py.
"""
