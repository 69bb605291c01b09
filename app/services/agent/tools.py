"""Tool registry for the supervisor and the upstream realtime session.

Each tool is a name bound to a pydantic argument model and a handler. The
registry produces the function schemas sent to the model and executes calls the
model makes, validating arguments before a handler sees them.
"""
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.services.agent.reference_data import ReferenceDataset

logger = logging.getLogger(__name__)

UNKNOWN_TOOL = {"error": "unknown tool"}


class LookupPolicyDocumentArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    topic: str = Field(
        description="The topic or keyword to search for in company policies or documents."
    )


class GetUserAccountInfoArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    phone_number: str = Field(
        description=(
            "Formatted as '(xxx) xxx-xxxx'. MUST be provided by the user, "
            "never a null or empty string."
        )
    )


class FindNearestStoreArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    zip_code: str = Field(description="The customer's 5-digit zip code.")


class Tool(BaseModel):
    """A callable tool exposed to the model."""

    name: str
    description: str
    args_model: Type[BaseModel]
    handler: Callable[[Any], Any]

    def schema(self) -> Dict[str, Any]:
        """Function schema in the flat Responses/Realtime API shape."""
        parameters = self.args_model.model_json_schema()
        for prop in parameters.get("properties", {}).values():
            prop.pop("title", None)
        parameters.pop("title", None)
        parameters["additionalProperties"] = False
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": parameters,
        }


class ToolRegistry:
    """Maps tool names to validated-argument handlers."""

    def __init__(self):
        self._tools: Dict[str, Tool] = {}

    def register(
        self,
        name: str,
        description: str,
        args_model: Type[BaseModel],
        handler: Callable[[Any], Any],
    ) -> None:
        """Register a tool. Names must be unique."""
        if name in self._tools:
            raise ValueError(f"Tool {name} is already registered")
        self._tools[name] = Tool(
            name=name, description=description, args_model=args_model, handler=handler
        )

    @property
    def names(self) -> List[str]:
        return list(self._tools)

    def schemas(self) -> List[Dict[str, Any]]:
        """Schemas for every registered tool, in registration order."""
        return [tool.schema() for tool in self._tools.values()]

    def execute(self, name: str, arguments: Optional[str]) -> Any:
        """Run a tool call.

        Args:
            name: Tool name requested by the model
            arguments: JSON encoded arguments as sent by the model

        Returns:
            JSON-serializable tool output, or an ``{"error": ...}`` object when
            the tool is unknown or the arguments do not validate
        """
        tool = self._tools.get(name)
        if tool is None:
            logger.warning(f"[SUPERVISOR] Unknown tool requested: {name}")
            return dict(UNKNOWN_TOOL)

        try:
            raw_args = json.loads(arguments or "{}")
            args = tool.args_model.model_validate(raw_args)
        except (ValueError, ValidationError) as e:
            logger.warning(f"[SUPERVISOR] Invalid arguments for {name}: {str(e)}")
            return {"error": f"invalid arguments for {name}"}

        logger.info(f"[SUPERVISOR] Tool call: {name} {args.model_dump()}")
        return tool.handler(args)


def build_default_tools(dataset: Optional[ReferenceDataset] = None) -> ToolRegistry:
    """Registry with the customer-service tools over the reference dataset."""
    dataset = dataset or ReferenceDataset()
    registry = ToolRegistry()

    def lookup_policy_document(args: LookupPolicyDocumentArgs) -> List[Dict[str, Any]]:
        return [doc.model_dump() for doc in dataset.search_policies(args.topic)]

    def get_user_account_info(args: GetUserAccountInfoArgs) -> Dict[str, Any]:
        # Read-only sample account, independent of the number given
        return dataset.account()

    def find_nearest_store(args: FindNearestStoreArgs) -> List[Dict[str, Any]]:
        return [store.model_dump() for store in dataset.stores_by_zip(args.zip_code)]

    registry.register(
        "lookupPolicyDocument",
        "Tool to look up internal documents and policies by topic or keyword.",
        LookupPolicyDocumentArgs,
        lookup_policy_document,
    )
    registry.register(
        "getUserAccountInfo",
        "Tool to get user account information. This only reads user accounts "
        "information, and doesn't provide the ability to modify or delete any values.",
        GetUserAccountInfoArgs,
        get_user_account_info,
    )
    registry.register(
        "findNearestStore",
        "Tool to find the nearest store location to a customer, given their zip code.",
        FindNearestStoreArgs,
        find_nearest_store,
    )
    return registry
