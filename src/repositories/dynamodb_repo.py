"""DynamoDB record store for customers and their interaction log."""

import json
from decimal import Decimal
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from models.customer import Customer
from models.interaction import Interaction
from repositories.base import RecordStore
from utils.error_handling import NotFoundError, ValidationError
from utils.logging_config import get_logger

logger = get_logger(__name__)


def _to_item(model) -> Dict[str, Any]:
    """DynamoDB rejects floats; round-trip through JSON to get Decimals."""
    data = json.loads(model.model_dump_json(), parse_float=Decimal)
    return {k: v for k, v in data.items() if v is not None}


def _from_item(item: Dict[str, Any]) -> Dict[str, Any]:
    converted = {}
    for key, value in item.items():
        if isinstance(value, Decimal):
            value = int(value) if value == value.to_integral_value() else float(value)
        converted[key] = value
    return converted


class DynamoDbRepository(RecordStore):
    """
    Customers are keyed by ``email``; interactions by ``customer_id`` with a
    ``sort_key`` of ``<iso timestamp>#<interaction id>`` so queries come back
    in time order.
    """

    def __init__(
        self,
        customers_table: str,
        interactions_table: str,
        dynamodb=None,
    ):
        resource = dynamodb or boto3.resource("dynamodb")
        self.customers = resource.Table(customers_table)
        self.interactions = resource.Table(interactions_table)

    def get_customer_by_email(self, email: str) -> Optional[Customer]:
        resp = self.customers.get_item(Key={"email": email.strip().lower()})
        item = resp.get("Item")
        return Customer.model_validate(_from_item(item)) if item else None

    def create_customer(self, customer: Customer) -> Customer:
        try:
            self.customers.put_item(
                Item=_to_item(customer),
                ConditionExpression="attribute_not_exists(email)",
            )
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                raise ValidationError(f"Customer {customer.email} already exists") from exc
            raise
        logger.info("Customer created", extra={"customer_id": customer.customer_id})
        return customer

    def update_customer(self, customer: Customer) -> Customer:
        try:
            self.customers.put_item(
                Item=_to_item(customer),
                ConditionExpression="customer_id = :cid",
                ExpressionAttributeValues={":cid": customer.customer_id},
            )
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                raise NotFoundError(f"Customer {customer.customer_id} not found") from exc
            raise
        return customer

    def append_interaction(self, interaction: Interaction) -> Interaction:
        # Customers are keyed by email, so the owning customer is not re-read here.
        item = _to_item(interaction)
        item["sort_key"] = f"{interaction.timestamp.isoformat()}#{interaction.interaction_id}"
        self.interactions.put_item(
            Item=item,
            ConditionExpression="attribute_not_exists(sort_key)",
        )
        return interaction

    def list_interactions(self, customer_id: str, limit: int = 20) -> List[Interaction]:
        resp = self.interactions.query(
            KeyConditionExpression=Key("customer_id").eq(customer_id),
            ScanIndexForward=False,
            Limit=limit,
        )
        items = resp.get("Items", [])
        return [
            Interaction.model_validate({k: v for k, v in _from_item(i).items() if k != "sort_key"})
            for i in items
        ]
