"""
FastAPI dependencies for gateway state validation.
"""

from fastapi import HTTPException, status

from webchat.services.gateway import IChannelGateway, gateway


async def get_ready_gateway() -> IChannelGateway:
    """
    Dependency that checks if the transport is connected.
    Returns the channel gateway.
    """
    if not gateway.is_ready():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Transport not connected."
        )
    return gateway
