"""
CIS-2 token standard types used to move tokens into the staking contract.

The token contract's own schema is not required: the standard `transfer`
parameter layout is fixed, so it is described here and serialized into a
regular module schema.
"""

from typing import Any, Dict, List

from .addresses import ContractAddress
from .schema import (
    FunctionSchema,
    ContractSchema,
    ModuleSchema,
    SizeLength,
    TypeTag,
    enum,
    list_of,
    plain,
    sized,
    struct_type,
    uleb128,
    unnamed_fields,
)

TRANSFER_ENTRYPOINT = "transfer"
DEFAULT_RECEIVE_HOOK = "onReceivingCIS2"

ADDRESS_TYPE = enum(
    ("Account", unnamed_fields(plain(TypeTag.ACCOUNT_ADDRESS))),
    ("Contract", unnamed_fields(plain(TypeTag.CONTRACT_ADDRESS))),
)

RECEIVER_TYPE = enum(
    ("Account", unnamed_fields(plain(TypeTag.ACCOUNT_ADDRESS))),
    (
        "Contract",
        unnamed_fields(
            plain(TypeTag.CONTRACT_ADDRESS), sized(TypeTag.STRING, SizeLength.U16)
        ),
    ),
)

TRANSFER_TYPE = struct_type(
    ("token_id", sized(TypeTag.BYTE_LIST, SizeLength.U8)),
    ("amount", uleb128(37)),
    ("from", ADDRESS_TYPE),
    ("to", RECEIVER_TYPE),
    ("data", sized(TypeTag.BYTE_LIST, SizeLength.U16)),
)

TRANSFER_PARAMETER_TYPE = list_of(TRANSFER_TYPE, SizeLength.U16)


def token_module_schema(contract_name: str) -> ModuleSchema:
    """Module schema describing a CIS-2 token contract's transfer entrypoint."""
    return ModuleSchema(
        version=1,
        contracts={
            contract_name: ContractSchema(
                receive={TRANSFER_ENTRYPOINT: FunctionSchema(parameter=TRANSFER_PARAMETER_TYPE)}
            )
        },
    )


def transfer_to_contract(
    sender: str,
    contract: ContractAddress,
    amount: int,
    hook: str = DEFAULT_RECEIVE_HOOK,
    token_id: str = "",
    data: str = "",
) -> List[Dict[str, Any]]:
    """Transfer parameter value moving ``amount`` from an account to a contract hook."""
    return [
        {
            "token_id": token_id,
            "amount": amount,
            "from": {"Account": [sender]},
            "to": {"Contract": [contract.to_dict(), hook]},
            "data": data,
        }
    ]
