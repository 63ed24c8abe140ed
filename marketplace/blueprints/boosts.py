from flask import Blueprint, jsonify
from flask_login import login_required
from marketplace.middleware import current_principal, role_required
from marketplace.serializers import boost_purchase_to_dict
from marketplace.services import boosts
from marketplace.utils import decimal_str, request_payload

bp = Blueprint('boosts', __name__)


@bp.route('/boosts/packages', methods=['GET'])
@login_required
def list_packages():
    return jsonify({'packages': [
        {
            'id': p.id,
            'name': p.name,
            'price': decimal_str(p.price),
            'duration_days': p.duration_days,
        }
        for p in boosts.list_boost_packages()
    ]})


@bp.route('/boosts', methods=['POST'])
@login_required
@role_required('seller')
def purchase_boost():
    data = request_payload()
    purchase, redirect = boosts.purchase_boost(
        current_principal(),
        data.get('package_id'),
        product_id=data.get('product_id'),
        service_id=data.get('service_id'))
    return jsonify({
        'boost_purchase': boost_purchase_to_dict(purchase),
        'redirect': redirect,
    }), 201


@bp.route('/boosts/<int:purchase_id>/activate', methods=['POST'])
@login_required
@role_required('admin')
def activate_boost(purchase_id):
    purchase, changed = boosts.activate_boost(current_principal(), purchase_id)
    return jsonify({
        'boost_purchase': boost_purchase_to_dict(purchase),
        'changed': changed,
    })
