import base64
import hashlib
import hmac
import json
import logging
import os
from datetime import date
from typing import Any, Dict, Iterator, List, Optional

import requests
from django.conf import settings

logger = logging.getLogger(__name__)


class ShopifyError(Exception):
    """Raised when a Shopify Admin API call fails."""


class ShopifyConfigurationError(ShopifyError):
    """Raised when required Shopify settings are missing."""


class WebhookSignatureError(ShopifyError):
    """Raised when a webhook body does not match its HMAC signature."""


BULK_ORDERS_QUERY = """
{
  orders(query: "created_at:>=%(since)s") {
    edges {
      node {
        id
        legacyResourceId
        name
        email
        createdAt
        updatedAt
        cancelledAt
        displayFinancialStatus
        displayFulfillmentStatus
        currentTotalPriceSet { shopMoney { amount currencyCode } }
        currentSubtotalPriceSet { shopMoney { amount } }
        currentShippingPriceSet { shopMoney { amount } }
        customer { firstName lastName email numberOfOrders }
        shippingAddress { address1 address2 city province country countryCodeV2 zip }
        lineItems {
          edges {
            node {
              id
              name
              sku
              quantity
              originalUnitPriceSet { shopMoney { amount } }
            }
          }
        }
      }
    }
  }
}
"""

RUN_BULK_QUERY_MUTATION = """
mutation bulkOperationRunQuery($query: String!) {
  bulkOperationRunQuery(query: $query) {
    bulkOperation { id status }
    userErrors { field message }
  }
}
"""

CURRENT_BULK_OPERATION_QUERY = """
query {
  currentBulkOperation {
    id
    status
    errorCode
    createdAt
    completedAt
    objectCount
    fileSize
    url
    partialDataUrl
  }
}
"""

WEBHOOK_SUBSCRIPTION_CREATE_MUTATION = """
mutation webhookSubscriptionCreate($topic: WebhookSubscriptionTopic!, $webhookSubscription: WebhookSubscriptionInput!) {
  webhookSubscriptionCreate(topic: $topic, webhookSubscription: $webhookSubscription) {
    webhookSubscription {
      id
      topic
      endpoint {
        __typename
        ... on WebhookHttpEndpoint { callbackUrl }
      }
    }
    userErrors { field message }
  }
}
"""

# GraphQL enum values for the order topics handled by the webhook endpoint.
ORDER_WEBHOOK_TOPICS = ("ORDERS_CREATE", "ORDERS_UPDATED", "ORDERS_FULFILLED", "ORDERS_CANCELLED")


def _get_setting(key: str, required: bool = True, default: str = "") -> str:
    value = getattr(settings, key, None) or os.getenv(key) or default
    if required and not value:
        raise ShopifyConfigurationError(
            f"Missing Shopify configuration: {key}. Set it in Django settings or environment variables."
        )
    return value


def compute_webhook_hmac(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_webhook(body: bytes, signature: Optional[str], secret: Optional[str] = None) -> None:
    """
    Check the ``X-Shopify-Hmac-Sha256`` header against the raw request body.

    Raises WebhookSignatureError when a secret is configured and the
    signature is missing or wrong.
    """
    secret = secret if secret is not None else _get_setting("SHOPIFY_WEBHOOK_SECRET", required=False)
    if not secret:
        logger.warning("SHOPIFY_WEBHOOK_SECRET is not set; accepting webhook without verification")
        return
    if not signature:
        raise WebhookSignatureError("Missing webhook signature")
    expected = compute_webhook_hmac(body, secret)
    if not hmac.compare_digest(expected, signature.strip()):
        raise WebhookSignatureError("Invalid webhook signature")


class ShopifyClient:
    """Thin Admin API client over requests."""

    def __init__(
        self,
        store_domain: Optional[str] = None,
        access_token: Optional[str] = None,
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.store_domain = store_domain or _get_setting("SHOPIFY_STORE_DOMAIN")
        self.access_token = access_token or _get_setting("SHOPIFY_ACCESS_TOKEN")
        self.api_version = api_version or _get_setting("SHOPIFY_API_VERSION", required=False, default="2024-01")
        self.timeout = timeout or float(getattr(settings, "SHOPIFY_REQUEST_TIMEOUT", 30))
        self.session = session or requests.Session()

    @property
    def graphql_url(self) -> str:
        return f"https://{self.store_domain}/admin/api/{self.api_version}/graphql.json"

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.session.post(
                self.graphql_url,
                json=payload,
                headers={"X-Shopify-Access-Token": self.access_token, "Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise ShopifyError(f"Shopify request failed: {exc}") from exc
        if not response.ok:
            try:
                detail = response.json()
            except ValueError:
                detail = response.text
            raise ShopifyError(f"Shopify API returned {response.status_code}: {detail}")
        try:
            return response.json()
        except ValueError as exc:
            raise ShopifyError("Shopify API returned a non-JSON response") from exc

    def graphql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables
        result = self._post(payload)
        if result.get("errors"):
            raise ShopifyError(f"Shopify GraphQL errors: {result['errors']}")
        return result.get("data") or {}

    def start_bulk_order_export(self, since: date) -> Dict[str, Any]:
        query = BULK_ORDERS_QUERY % {"since": since.isoformat()}
        data = self.graphql(RUN_BULK_QUERY_MUTATION, {"query": query})
        result = data.get("bulkOperationRunQuery") or {}
        if result.get("userErrors"):
            raise ShopifyError(f"Bulk operation rejected: {result['userErrors']}")
        operation = result.get("bulkOperation")
        if not operation or not operation.get("id"):
            raise ShopifyError("Shopify did not return a bulk operation")
        logger.info("Started Shopify bulk operation %s (%s)", operation["id"], operation.get("status"))
        return operation

    def current_bulk_operation(self) -> Optional[Dict[str, Any]]:
        return self.graphql(CURRENT_BULK_OPERATION_QUERY).get("currentBulkOperation")

    def download_jsonl(self, url: str) -> Iterator[Dict[str, Any]]:
        """Yield the objects of a bulk result file, one per non-empty line."""
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise ShopifyError(f"Bulk result download failed: {exc}") from exc
        if not response.ok:
            raise ShopifyError(f"Bulk result download returned {response.status_code}")
        for number, line in enumerate(response.text.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError:
                logger.warning("Skipping malformed JSONL line %s", number)

    def register_webhooks(self, callback_url: str, topics=ORDER_WEBHOOK_TOPICS) -> List[Dict[str, Any]]:
        """
        Subscribe ``callback_url`` to each order topic.

        A topic Shopify rejects (e.g. already subscribed) is reported in the
        results rather than raised; transport and GraphQL errors propagate.
        """
        results = []
        for topic in topics:
            data = self.graphql(
                WEBHOOK_SUBSCRIPTION_CREATE_MUTATION,
                {"topic": topic, "webhookSubscription": {"callbackUrl": callback_url, "format": "JSON"}},
            )
            result = data.get("webhookSubscriptionCreate") or {}
            subscription = result.get("webhookSubscription")
            if result.get("userErrors"):
                logger.warning("Webhook subscription for %s rejected: %s", topic, result["userErrors"])
                results.append({"topic": topic, "success": False, "errors": result["userErrors"]})
            elif subscription:
                logger.info("Subscribed %s to %s (%s)", callback_url, topic, subscription.get("id"))
                results.append({"topic": topic, "success": True, "id": subscription.get("id")})
            else:
                logger.warning("Unexpected webhookSubscriptionCreate response for %s: %s", topic, data)
                results.append({"topic": topic, "success": False, "errors": [{"message": "Unexpected response"}]})
        return results
