"""Invoice, bill and payment API."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from pydantic import ValidationError

from aibos.core.auth.permissions import DOCUMENT_CREATE, DOCUMENT_POST, PAYMENT_CREATE
from aibos.core.tenancy.scope import current_scope
from aibos.core.utils.decorators import csrf_protected, require_permissions, tenant_required
from aibos.core.utils.errors import error_response, validation_response
from aibos.core.utils.pagination import page_args, paginate
from aibos.domains.billing.schemas.billing_schemas import (
    BillCreateRequest,
    InvoiceCreateRequest,
    PaymentCreateRequest,
    VoidRequest,
    serialize_bill,
    serialize_invoice,
    serialize_payment,
)
from aibos.domains.billing.services.document_service import (
    create_bill,
    create_invoice,
    get_bill,
    get_invoice,
    list_bills,
    list_invoices,
    post_bill,
    post_invoice,
    void_bill,
    void_invoice,
)
from aibos.domains.billing.services.payment_service import get_payment, list_payments, record_payment
from aibos.extensions import limiter
from aibos.platform.idempotency import idempotent

billing_api_bp = Blueprint("billing_api", __name__)


def _page(query, serializer, key: str):
    page, per_page = page_args()
    result = paginate(query, page, per_page)
    return jsonify(
        {
            "ok": True,
            key: [serializer(item) for item in result["items"]],
            "page": result["page"],
            "per_page": result["per_page"],
            "total": result["total"],
        }
    )


# ==================== Invoices ====================


@billing_api_bp.get("/invoices")
@tenant_required
@limiter.limit("240/minute")
def list_invoices_endpoint():
    try:
        query = list_invoices(current_scope(), status=request.args.get("status"))
    except ValueError as exc:
        return error_response(exc)
    return _page(query, serialize_invoice, "invoices")


@billing_api_bp.post("/invoices")
@tenant_required
@csrf_protected
@require_permissions({DOCUMENT_CREATE})
@idempotent
@limiter.limit("60/minute")
def create_invoice_endpoint():
    try:
        data = InvoiceCreateRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return validation_response(exc)
    try:
        invoice = create_invoice(current_scope(), data.model_dump())
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "invoice": serialize_invoice(invoice)}), 201


@billing_api_bp.get("/invoices/<int:invoice_id>")
@tenant_required
@limiter.limit("240/minute")
def get_invoice_endpoint(invoice_id: int):
    try:
        invoice = get_invoice(current_scope(), invoice_id)
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "invoice": serialize_invoice(invoice)})


@billing_api_bp.post("/invoices/<int:invoice_id>/post")
@tenant_required
@csrf_protected
@require_permissions({DOCUMENT_POST})
@idempotent
@limiter.limit("60/minute")
def post_invoice_endpoint(invoice_id: int):
    try:
        invoice = post_invoice(current_scope(), invoice_id)
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "invoice": serialize_invoice(invoice)})


@billing_api_bp.post("/invoices/<int:invoice_id>/void")
@tenant_required
@csrf_protected
@require_permissions({DOCUMENT_POST})
@limiter.limit("30/minute")
def void_invoice_endpoint(invoice_id: int):
    try:
        data = VoidRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return validation_response(exc)
    try:
        invoice = void_invoice(current_scope(), invoice_id, data.reason)
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "invoice": serialize_invoice(invoice)})


# ==================== Bills ====================


@billing_api_bp.get("/bills")
@tenant_required
@limiter.limit("240/minute")
def list_bills_endpoint():
    try:
        query = list_bills(current_scope(), status=request.args.get("status"))
    except ValueError as exc:
        return error_response(exc)
    return _page(query, serialize_bill, "bills")


@billing_api_bp.post("/bills")
@tenant_required
@csrf_protected
@require_permissions({DOCUMENT_CREATE})
@idempotent
@limiter.limit("60/minute")
def create_bill_endpoint():
    try:
        data = BillCreateRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return validation_response(exc)
    try:
        bill = create_bill(current_scope(), data.model_dump())
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "bill": serialize_bill(bill)}), 201


@billing_api_bp.get("/bills/<int:bill_id>")
@tenant_required
@limiter.limit("240/minute")
def get_bill_endpoint(bill_id: int):
    try:
        bill = get_bill(current_scope(), bill_id)
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "bill": serialize_bill(bill)})


@billing_api_bp.post("/bills/<int:bill_id>/post")
@tenant_required
@csrf_protected
@require_permissions({DOCUMENT_POST})
@idempotent
@limiter.limit("60/minute")
def post_bill_endpoint(bill_id: int):
    try:
        bill = post_bill(current_scope(), bill_id)
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "bill": serialize_bill(bill)})


@billing_api_bp.post("/bills/<int:bill_id>/void")
@tenant_required
@csrf_protected
@require_permissions({DOCUMENT_POST})
@limiter.limit("30/minute")
def void_bill_endpoint(bill_id: int):
    try:
        data = VoidRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return validation_response(exc)
    try:
        bill = void_bill(current_scope(), bill_id, data.reason)
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "bill": serialize_bill(bill)})


# ==================== Payments ====================


@billing_api_bp.get("/payments")
@tenant_required
@limiter.limit("240/minute")
def list_payments_endpoint():
    try:
        query = list_payments(
            current_scope(),
            document_type=request.args.get("document_type"),
            document_id=request.args.get("document_id", type=int),
        )
    except ValueError as exc:
        return error_response(exc)
    return _page(query, serialize_payment, "payments")


@billing_api_bp.post("/payments")
@tenant_required
@csrf_protected
@require_permissions({PAYMENT_CREATE})
@idempotent
@limiter.limit("60/minute")
def create_payment_endpoint():
    try:
        data = PaymentCreateRequest.model_validate(request.get_json(silent=True) or {})
    except ValidationError as exc:
        return validation_response(exc)
    try:
        payment = record_payment(current_scope(), **data.model_dump())
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "payment": serialize_payment(payment)}), 201


@billing_api_bp.get("/payments/<int:payment_id>")
@tenant_required
@limiter.limit("240/minute")
def get_payment_endpoint(payment_id: int):
    try:
        payment = get_payment(current_scope(), payment_id)
    except ValueError as exc:
        return error_response(exc)
    return jsonify({"ok": True, "payment": serialize_payment(payment)})
