from tortoise import BaseDBAsyncClient


async def upgrade(db: BaseDBAsyncClient) -> str:
    return """
        CREATE TABLE IF NOT EXISTS "face_records" (
    "id" UUID NOT NULL PRIMARY KEY,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "user_id" VARCHAR(64),
    "face_id" VARCHAR(128) NOT NULL UNIQUE,
    "image_data" TEXT NOT NULL,
    "face_data" TEXT NOT NULL,
    "confidence" DOUBLE PRECISION NOT NULL DEFAULT 0,
    "is_active" BOOL NOT NULL DEFAULT True
);
CREATE INDEX IF NOT EXISTS "idx_face_record_user_id_3f1c2a" ON "face_records" ("user_id");
CREATE INDEX IF NOT EXISTS "idx_face_record_is_acti_8d0e41" ON "face_records" ("is_active");
CREATE TABLE IF NOT EXISTS "face_recognition_events" (
    "id" BIGSERIAL NOT NULL PRIMARY KEY,
    "face_record_id" UUID,
    "face_id" VARCHAR(128),
    "event_type" VARCHAR(16) NOT NULL,
    "confidence" DOUBLE PRECISION NOT NULL DEFAULT 0,
    "timestamp" TIMESTAMPTZ NOT NULL,
    "camera_id" VARCHAR(128),
    "location" VARCHAR(255),
    "image_data" TEXT,
    "metadata" JSONB
);
CREATE INDEX IF NOT EXISTS "idx_face_recogn_face_re_5b7d90" ON "face_recognition_events" ("face_record_id");
CREATE INDEX IF NOT EXISTS "idx_face_recogn_face_id_c2a9e7" ON "face_recognition_events" ("face_id");
CREATE INDEX IF NOT EXISTS "idx_face_recogn_event_t_1e64b3" ON "face_recognition_events" ("event_type");
CREATE INDEX IF NOT EXISTS "idx_face_recogn_timesta_9a0f52" ON "face_recognition_events" ("timestamp");
COMMENT ON COLUMN "face_recognition_events"."event_type" IS 'DETECTED: DETECTED\nRECOGNIZED: RECOGNIZED\nUNKNOWN: UNKNOWN\nENROLLED: ENROLLED\nUPDATED: UPDATED\nDELETED: DELETED';
CREATE TABLE IF NOT EXISTS "aerich" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "version" VARCHAR(255) NOT NULL,
    "app" VARCHAR(100) NOT NULL,
    "content" JSONB NOT NULL
);"""


async def downgrade(db: BaseDBAsyncClient) -> str:
    return """
        DROP TABLE IF EXISTS "face_recognition_events";
        DROP TABLE IF EXISTS "face_records";"""
