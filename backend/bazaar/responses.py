# Overview: JSON envelope shared by every API route.

from __future__ import annotations

from flask import jsonify

from .errors import ServiceError, InternalServiceError


def success_response(data, status: int = 200):
    return jsonify({"success": True, "data": data}), status


def error_response(error: ServiceError):
    return jsonify({"success": False, "error": error.to_dict()}), error.http_status


def internal_error_response():
    return error_response(InternalServiceError("Internal server error"))
