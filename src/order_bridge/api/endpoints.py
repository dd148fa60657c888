"""API endpoint paths."""

# Rithum (DSCO) API v3, relative to RITHUM_API_URL
RITHUM_TOKEN = "/oauth2/token"
RITHUM_ORDER_PAGE = "/order/page"
RITHUM_ORDERS = "/orders"
RITHUM_ORDER = "/orders/{order_id}"
RITHUM_ORDER_CREATE = "/order/"
RITHUM_ORDER_BATCH = "/order/batch/small"
RITHUM_ORDER_CHANGELOG = "/order/changelog"
RITHUM_ORDER_UPDATE_BATCH = "/orderupdate/batch/small"
RITHUM_SHIPMENT_BATCH = "/order/shipment/batch/small"
RITHUM_STREAM = "/stream"
RITHUM_STREAM_EVENTS = "/stream/{stream_id}/{partition_id}/{position}"

# ShipStation API v2
SHIPSTATION_SHIPMENTS = "/v2/shipments"
SHIPSTATION_SHIPMENT = "/v2/shipments/{shipment_id}"
SHIPSTATION_SHIPMENT_BY_EXTERNAL_ID = "/v2/shipments/external_shipment_id/{external_id}"
SHIPSTATION_SHIPMENT_TAG = "/v2/shipments/{shipment_id}/tags/{tag_name}"
SHIPSTATION_ORDER = "/v2/orders/{order_id}"
SHIPSTATION_LABELS = "/v2/labels"
SHIPSTATION_FULFILLMENTS = "/v2/fulfillments"
SHIPSTATION_WAREHOUSES = "/v2/warehouses"
SHIPSTATION_CARRIERS = "/v2/carriers"
SHIPSTATION_WEBHOOKS = "/v2/environment/webhooks"
SHIPSTATION_WEBHOOK = "/v2/environment/webhooks/{webhook_id}"
