"""
Place one call through AMI and print its result.

    AMI_HOST=pbx.example.com AMI_USERNAME=admin AMI_SECRET=secret \
        python examples/originate_call.py SIP/100 ru/vm-options
"""
import asyncio
import sys
from callbridge.adapters.ami import AmiAdapter
from callbridge.errors import CallBridgeError
from callbridge.logging import setup_logging, get_logger
from callbridge.services.call_correlator import CallCorrelator

logger = get_logger()


async def main(channel: str, sound: str) -> int:
    correlator = CallCorrelator(AmiAdapter())
    try:
        await correlator.open()
        logger.info("connected")

        result = await correlator.originate({
            "Action": "Originate",
            "Channel": channel,
            "Application": "Playback",
            "Data": sound,
            "Async": "true",
        })
        logger.info("call_result", **result.model_dump(mode="json"))
        return 0
    except CallBridgeError as e:
        logger.error("call_failed", error=type(e).__name__, message=str(e))
        return 1
    finally:
        await correlator.close()


if __name__ == "__main__":
    setup_logging(json_output=False)
    channel = sys.argv[1] if len(sys.argv) > 1 else "SIP/100"
    sound = sys.argv[2] if len(sys.argv) > 2 else "vm-options"
    sys.exit(asyncio.run(main(channel, sound)))
