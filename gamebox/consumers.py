import time

from channels.generic.websocket import AsyncJsonWebsocketConsumer

from importer.broadcast import IMPORT_PROGRESS_GROUP


class ImportProgressConsumer(AsyncJsonWebsocketConsumer):
    async def connect(self):
        await self.channel_layer.group_add(IMPORT_PROGRESS_GROUP, self.channel_name)
        await self.accept()

    async def disconnect(self, code):
        await self.channel_layer.group_discard(
            IMPORT_PROGRESS_GROUP, self.channel_name
        )

    async def import_progress(self, message):
        await self.send_json(
            {"message": message["snapshot"], "message_timestamp": int(time.time())}
        )
