"""Pydantic request and response models for the relayer API."""

from typing import List, Optional

from pydantic import BaseModel, Field, conint

ProofByte = conint(ge=0, le=255)


class VerifyRequest(BaseModel):
    """Request model for proof verification."""
    proof: List[ProofByte] = Field(..., min_length=1, description="Proof bytes")
    public_inputs: List[str] = Field(
        ...,
        alias="publicInputs",
        description="[root, nullifierHash, recipientField, amount] as 0x-hex field elements",
    )

    class Config:
        populate_by_name = True

    @property
    def proof_bytes(self) -> bytes:
        return bytes(self.proof)


class WithdrawRequest(VerifyRequest):
    """Request model for withdrawals."""
    recipient: str = Field(..., min_length=1, description="Stellar G... or M... address")


class HealthResponse(BaseModel):
    """Service status."""
    status: str = "ok"
    service: str = "rotor-relayer"
    configured: bool


class RootResponse(BaseModel):
    """Current Merkle root of the pool."""
    root: str = Field(..., description="Merkle root (hex)")


class VerifyResponse(BaseModel):
    """Proof verification result."""
    valid: bool
    error: Optional[str] = None


class WithdrawResponse(BaseModel):
    """Response model for a confirmed withdrawal."""
    success: bool = True
    verified: bool = True
    tx_hash: str = Field(..., alias="txHash")
    amount: str = Field(..., description="Amount with 7 decimals")
    recipient: str
    message: str

    class Config:
        populate_by_name = True


class TxStatusResponse(BaseModel):
    """Status of a submitted transaction."""
    tx_hash: str = Field(..., alias="txHash")
    status: str = Field(..., description="pending, confirmed or failed")
    error: Optional[str] = None

    class Config:
        populate_by_name = True


class ErrorResponse(BaseModel):
    """Error response."""
    success: bool = False
    error: str = Field(..., description="Error message")
    tx_hash: Optional[str] = Field(default=None, alias="txHash")

    class Config:
        populate_by_name = True
