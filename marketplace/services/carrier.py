from decimal import Decimal, InvalidOperation
from flask import current_app
import logging
import requests

logger = logging.getLogger(__name__)


class CarrierError(Exception):
    pass


class ShipmentRequest:
    def __init__(
            self,
            reference,
            weight_kg,
            pieces,
            description,
            consignee,
            declared_value=None):
        self.reference = reference
        self.weight_kg = weight_kg
        self.pieces = pieces
        self.description = description
        # {name, phone, address_line, city, postal_code, country}
        self.consignee = consignee
        self.declared_value = declared_value

    def to_payload(self):
        return {
            'reference': self.reference,
            'weight': {'unit': 'KG', 'value': float(self.weight_kg)},
            'numberOfPieces': self.pieces,
            'descriptionOfGoods': self.description,
            'consignee': self.consignee,
            'declaredValue': (
                str(self.declared_value)
                if self.declared_value is not None else None
            ),
        }


class CarrierShipment:
    def __init__(self, awb_id, label_url=None, cost=None):
        self.awb_id = awb_id
        self.label_url = label_url
        self.cost = cost

    def __repr__(self):
        return f'<CarrierShipment {self.awb_id}>'


class CarrierClient:
    def create_shipment(self, shipment_request):
        raise NotImplementedError


class DisabledCarrierClient(CarrierClient):
    def create_shipment(self, shipment_request):
        raise CarrierError('Carrier integration is disabled')


class HttpCarrierClient(CarrierClient):
    def __init__(self, base_url, api_key, timeout=15):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout

    def create_shipment(self, shipment_request):
        try:
            r = requests.post(
                f'{self.base_url}/shipments',
                json=shipment_request.to_payload(),
                headers={'Authorization': f'Bearer {self.api_key}'},
                timeout=self.timeout)
        except requests.RequestException as e:
            raise CarrierError(f'Carrier unreachable: {e}') from e

        if not r.ok:
            message = None
            if r.headers.get('content-type', '').startswith(
                    'application/json'):
                try:
                    body = r.json()
                except ValueError:
                    body = None
                if isinstance(body, dict):
                    message = body.get('error')
            raise CarrierError(
                message or f'Carrier returned HTTP {r.status_code}')

        try:
            data = r.json()
        except ValueError as e:
            raise CarrierError('Carrier returned a non-JSON response') from e
        if not isinstance(data, dict):
            raise CarrierError('Carrier returned an unexpected response')
        awb_id = data.get('awbId') or data.get('awb_id')
        if not awb_id:
            raise CarrierError('Carrier response did not include an AWB')
        cost = data.get('cost')
        try:
            cost = Decimal(str(cost)) if cost is not None else None
        except InvalidOperation as e:
            raise CarrierError(f'Carrier returned an invalid cost: {cost}') \
                from e
        return CarrierShipment(
            awb_id=str(awb_id),
            label_url=data.get('labelUrl') or data.get('label_url'),
            cost=cost,
        )


def get_carrier_client():
    client = current_app.extensions.get('carrier_client')
    if client is not None:
        return client
    config = current_app.config
    if config.get('CARRIER_ENABLED') and config.get('CARRIER_API_URL'):
        return HttpCarrierClient(
            config['CARRIER_API_URL'],
            config.get('CARRIER_API_KEY', ''),
            timeout=config.get('CARRIER_TIMEOUT_SECONDS', 15))
    return DisabledCarrierClient()
