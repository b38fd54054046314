"""Create gallery analysis tables

Revision ID: 0001_create_analysis_tables
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_create_analysis_tables'
down_revision = None
branch_labels = None
depends_on = None


analysis_status = sa.Enum('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED', name='analysisstatus')


def upgrade():
    op.create_table(
        'galleries',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('analysis_progress', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('ai_search_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('face_collection_id', sa.String(255), nullable=True),
        sa.Column('last_analysis_triggered_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
    )
    op.create_index('ix_galleries_id', 'galleries', ['id'])

    op.create_table(
        'photos',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('gallery_id', sa.String(36), sa.ForeignKey('galleries.id', ondelete='CASCADE'), nullable=False),
        sa.Column('s3_key', sa.String(512), nullable=False),
        sa.Column('thumbnail_s3_key', sa.String(512), nullable=True),
        sa.Column('content_type', sa.String(100), nullable=False, server_default='image/jpeg'),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
    )
    op.create_index('ix_photos_id', 'photos', ['id'])
    op.create_index('ix_photos_gallery_id', 'photos', ['gallery_id'])
    op.create_index('ix_photos_s3_key', 'photos', ['s3_key'], unique=True)

    op.create_table(
        'photo_analyses',
        sa.Column('photo_id', sa.String(36), sa.ForeignKey('photos.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('gallery_id', sa.String(36), sa.ForeignKey('galleries.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', analysis_status, nullable=False, server_default='PENDING'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('search_tags', sa.JSON(), nullable=False),
        sa.Column('analysis_data', sa.JSON(), nullable=True),
        sa.Column('face_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('analyzed_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
    )
    op.create_index('ix_photo_analyses_gallery_id', 'photo_analyses', ['gallery_id'])
    op.create_index('ix_photo_analyses_status', 'photo_analyses', ['status'])
    op.create_index('ix_photo_analyses_updated_at', 'photo_analyses', ['updated_at'])

    op.create_table(
        'person_clusters',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('gallery_id', sa.String(36), sa.ForeignKey('galleries.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('role', sa.String(100), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('face_description', sa.Text(), nullable=True),
        sa.Column('photo_ids', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
    )
    op.create_index('ix_person_clusters_id', 'person_clusters', ['id'])
    op.create_index('ix_person_clusters_gallery_id', 'person_clusters', ['gallery_id'])

    op.create_table(
        'person_faces',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('photo_id', sa.String(36), sa.ForeignKey('photo_analyses.photo_id', ondelete='CASCADE'), nullable=False),
        sa.Column('gallery_id', sa.String(36), sa.ForeignKey('galleries.id', ondelete='CASCADE'), nullable=False),
        sa.Column('face_id', sa.String(64), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('external_face_id', sa.String(128), nullable=True),
        sa.Column('bounding_box', sa.JSON(), nullable=False),
        sa.Column('appearance', sa.String(1000), nullable=False, server_default=''),
        sa.Column('role', sa.String(100), nullable=True),
        sa.Column('expression', sa.String(100), nullable=True),
        sa.Column('age_range', sa.String(100), nullable=True),
        sa.Column('person_cluster_id', sa.String(36), sa.ForeignKey('person_clusters.id', ondelete='SET NULL'), nullable=True),
        sa.UniqueConstraint('photo_id', 'face_id', name='uq_person_faces_photo_face'),
    )
    op.create_index('ix_person_faces_photo_id', 'person_faces', ['photo_id'])
    op.create_index('ix_person_faces_gallery_id', 'person_faces', ['gallery_id'])
    op.create_index('ix_person_faces_external_face_id', 'person_faces', ['external_face_id'], unique=True)
    op.create_index('ix_person_faces_person_cluster_id', 'person_faces', ['person_cluster_id'])


def downgrade():
    op.drop_table('person_faces')
    op.drop_table('person_clusters')
    op.drop_table('photo_analyses')
    op.drop_table('photos')
    op.drop_table('galleries')
    analysis_status.drop(op.get_bind(), checkfirst=True)
