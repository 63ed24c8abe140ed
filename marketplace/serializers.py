"""JSON shapes returned by the API blueprints."""
from marketplace.services.quotes import effective_quote_status
from marketplace.utils import decimal_str, iso


def _value(enum_value):
    return enum_value.value if enum_value is not None else None


def quote_to_dict(quote):
    return {
        'id': quote.id,
        'conversation_id': quote.conversation_id,
        'buyer_id': quote.buyer_id,
        'seller_id': quote.seller_id,
        'product_id': quote.product_id,
        'variant_id': quote.variant_id,
        'service_id': quote.service_id,
        'package_id': quote.package_id,
        'design_approval_id': quote.design_approval_id,
        'status': effective_quote_status(quote).value,
        'quoted_price': decimal_str(quote.quoted_price),
        'quantity': quote.quantity,
        'specifications': quote.specifications,
        'expires_at': iso(quote.expires_at),
        'accepted_at': iso(quote.accepted_at),
        'rejection_reason': quote.rejection_reason,
        'created_at': iso(quote.created_at),
        'updated_at': iso(quote.updated_at),
    }


def design_to_dict(approval):
    return {
        'id': approval.id,
        'conversation_id': approval.conversation_id,
        'buyer_id': approval.buyer_id,
        'seller_id': approval.seller_id,
        'context': approval.context.value,
        'product_id': approval.product_id,
        'variant_id': approval.variant_id,
        'service_id': approval.service_id,
        'package_id': approval.package_id,
        'quote_id': approval.quote_id,
        'files': approval.files,
        'buyer_notes': approval.buyer_notes,
        'seller_notes': approval.seller_notes,
        'status': approval.status.value,
        'copied_from_id': approval.copied_from_id,
        'reviewed_at': iso(approval.reviewed_at),
        'created_at': iso(approval.created_at),
    }


def cart_item_to_dict(item):
    return {
        'id': item.id,
        'variant_id': item.variant_id,
        'product_id': item.variant.product_id if item.variant else None,
        'quantity': item.quantity,
        'quote_id': item.quote_id,
        'design_approval_id': item.design_approval_id,
    }


def transaction_to_dict(transaction):
    return {
        'id': transaction.id,
        'type': transaction.type.value,
        'order_id': transaction.order_id,
        'booking_id': transaction.booking_id,
        'boost_purchase_id': transaction.boost_purchase_id,
        'amount': decimal_str(transaction.amount),
        'commission_rate': decimal_str(transaction.commission_rate),
        'commission_amount': decimal_str(transaction.commission_amount),
        'seller_payout': decimal_str(transaction.seller_payout),
        'payment_method': _value(transaction.payment_method),
        'status': transaction.status.value,
        'refunded_amount': decimal_str(transaction.refunded_amount),
        'commission_reversed_amount': decimal_str(
            transaction.commission_reversed_amount),
        'escrow_at': iso(transaction.escrow_at),
        'released_at': iso(transaction.released_at),
        'refunded_at': iso(transaction.refunded_at),
    }


def order_to_dict(order):
    return {
        'id': order.id,
        'checkout_session_id': order.checkout_session_id,
        'buyer_id': order.buyer_id,
        'seller_id': order.seller_id,
        'product_id': order.product_id,
        'variant_id': order.variant_id,
        'quote_id': order.quote_id,
        'design_approval_id': order.design_approval_id,
        'unit_price': decimal_str(order.unit_price),
        'quantity': order.quantity,
        'total_amount': decimal_str(order.total_amount),
        'shipping_cost': decimal_str(order.shipping_cost),
        'status': order.status.value,
        'ready_to_ship': order.ready_to_ship,
        'consolidated_shipment_id': order.consolidated_shipment_id,
        'tracking_number': order.tracking_number,
        'return_attempt_count': order.return_attempt_count,
        'created_at': iso(order.created_at),
    }


def booking_to_dict(booking):
    return {
        'id': booking.id,
        'buyer_id': booking.buyer_id,
        'seller_id': booking.seller_id,
        'service_id': booking.service_id,
        'package_id': booking.package_id,
        'quote_id': booking.quote_id,
        'scheduled_at': iso(booking.scheduled_at),
        'unit_price': decimal_str(booking.unit_price),
        'quantity': booking.quantity,
        'total_amount': decimal_str(booking.total_amount),
        'status': booking.status.value,
        'payment_reference': booking.payment_reference,
        'created_at': iso(booking.created_at),
    }


def session_to_dict(session):
    return {
        'id': session.id,
        'payment_reference': session.payment_reference,
        'payment_method': session.payment_method.value,
        'shipping_cost': decimal_str(session.shipping_cost),
        'total_amount': decimal_str(session.total_amount),
        'status': session.status.value,
    }


def shipment_to_dict(shipment):
    return {
        'id': shipment.id,
        'buyer_id': shipment.buyer_id,
        'order_count': shipment.order_count,
        'order_ids': [o.id for o in shipment.orders],
        'total_weight': str(shipment.total_weight),
        'total_shipping_cost': decimal_str(shipment.total_shipping_cost),
        'carrier_awb': shipment.carrier_awb,
        'carrier_label_url': shipment.carrier_label_url,
        'carrier_cost': decimal_str(shipment.carrier_cost),
        'carrier_error': shipment.carrier_error,
        'status': shipment.status.value,
        'carrier_payment_status': shipment.carrier_payment_status.value,
        'override_incomplete': shipment.override_incomplete,
        'override_reason': shipment.override_reason,
        'created_at': iso(shipment.created_at),
    }


def return_to_dict(request):
    return {
        'id': request.id,
        'order_id': request.order_id,
        'booking_id': request.booking_id,
        'reason': request.reason.value,
        'description': request.description,
        'evidence_urls': request.evidence_urls,
        'requested_refund_amount': decimal_str(
            request.requested_refund_amount),
        'status': request.status.value,
        'seller_status': request.seller_status.value,
        'seller_response': request.seller_response,
        'seller_proposed_amount': decimal_str(request.seller_proposed_amount),
        'admin_notes': request.admin_notes,
        'admin_override': request.admin_override,
        'approved_refund_amount': decimal_str(request.approved_refund_amount),
        'commission_reversed_amount': decimal_str(
            request.commission_reversed_amount),
        'created_at': iso(request.created_at),
    }


def boost_purchase_to_dict(purchase):
    return {
        'id': purchase.id,
        'package_id': purchase.package_id,
        'product_id': purchase.product_id,
        'service_id': purchase.service_id,
        'amount': decimal_str(purchase.amount),
        'payment_reference': purchase.payment_reference,
        'status': purchase.status.value,
        'boosted_item_id': purchase.boosted_item_id,
        'paid_at': iso(purchase.paid_at),
    }


def notification_to_dict(notification):
    return {
        'id': notification.id,
        'type': notification.type,
        'title': notification.title,
        'message': notification.message,
        'metadata': notification.get_metadata(),
        'is_read': notification.is_read,
        'created_at': iso(notification.created_at),
    }
