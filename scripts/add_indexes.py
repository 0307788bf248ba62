"""Migration script: create the relay's MongoDB indexes.

This script creates:
1. chat_messages: conversation history index (conversation_id, _id desc)
2. chat_messages: unread lookup index (receiver_id, read)
3. user_presence: role/online listing index and unique email index

Optionally clears online flags left behind by a crashed process.

Usage:
    python scripts/add_indexes.py [--reset-presence]

Ensure MONGO_URI and CHAT_DB_NAME environment variables are set.
"""
import argparse
import logging
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from relay_server.repository.mongo_helper import MongoRepositorySingleton, wait_for_mongo

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def list_index_names(repo):
    try:
        return sorted(repo.collection.index_information().keys())
    except Exception as e:
        logger.error(f'  Could not list indexes on {repo.collection_name}: {e}')
        return []


def main(argv=None):
    parser = argparse.ArgumentParser(description='Create relay MongoDB indexes')
    parser.add_argument('--reset-presence', action='store_true', help='Mark every stored presence record offline')
    args = parser.parse_args(argv)

    logger.info('Starting index migration...')
    logger.info('=' * 50)

    if not wait_for_mongo(max_attempts=3):
        logger.error('MongoDB is unreachable')
        return 1

    repositories = MongoRepositorySingleton.get_instance()
    repositories.ensure_indexes()

    for repo in (repositories.chat_message, repositories.user_presence):
        logger.info(f'{repo.collection_name}: {", ".join(list_index_names(repo))}')

    if args.reset_presence:
        reset = repositories.user_presence.reset_online()
        logger.info(f'user_presence: marked {reset} record(s) offline')

    logger.info('=' * 50)
    logger.info('Index migration complete!')
    return 0


if __name__ == '__main__':
    sys.exit(main())
